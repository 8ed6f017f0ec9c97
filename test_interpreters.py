"""Tests for diff descriptions, suggestions and shape inference."""

from trafficdiff import (
    build,
    apply_commands,
    DiffComputer,
    DiffDescriptionInterpreter,
    SuggestionInterpreter,
    DiffKind,
    Interaction,
    NO_CONTENT_TYPE,
)
from trafficdiff.commands import (
    AddPath,
    AddEndpoint,
    AddShape,
    AddField,
    AddResponse,
    SetFieldOptional,
    RemoveField,
    SetFieldShape,
    SetListItemShape,
    SetResponseBodyShape,
)
from trafficdiff.inference import ShapeInferrer, infer_body_shape
from trafficdiff.models import ShapeKind, ShapeMismatch
from trafficdiff.utils import IdGenerator

JSON = "application/json"


def users_spec(extra=()):
    return build([
        AddPath("p_users", "/users/{userId}"),
        AddEndpoint("p_users", "GET"),
        AddShape("s_user", ShapeKind.OBJECT, name="User"),
        AddField("f_id", "s_user", "id", "$string"),
        AddField("f_name", "s_user", "name", "$string"),
        AddResponse("p_users", "GET", 200, JSON, "s_user"),
        *extra,
    ])


def get_user(body, status=200, path="/users/1", content_type=JSON):
    return Interaction(
        method="GET",
        path=path,
        status_code=status,
        response_content_type=content_type if body is not None else NO_CONTENT_TYPE,
        response_body=body,
    )


def only_diff(state, interaction):
    diffs = DiffComputer(state).diff_interaction(interaction)
    assert len(diffs) == 1
    return diffs[0]


def resolves(state, suggestion, interaction):
    """Apply a suggestion and check the interaction no longer differs."""
    new_state = apply_commands(state, suggestion.commands)
    return DiffComputer(new_state).diff_interaction(interaction) == []


class TestShapeInference:
    """Test inferring shapes from observed values."""

    def setup_method(self):
        self.inferrer = ShapeInferrer(IdGenerator("test"))

    def test_primitives_use_core_shapes(self):
        """Test that primitives need no commands."""
        assert self.inferrer.infer("x") == ("$string", [])
        assert self.inferrer.infer(1.5) == ("$number", [])
        assert self.inferrer.infer(False) == ("$boolean", [])
        assert self.inferrer.infer(None) == ("$null", [])

    def test_object(self):
        """Test that objects declare their fields in order."""
        shape_id, commands = self.inferrer.infer({"a": 1, "b": "x"})
        state = apply_commands(build([]), commands)
        assert state.shape(shape_id).kind == ShapeKind.OBJECT
        assert [(f.name, f.field_shape_id, f.optional) for f in state.fields_of(shape_id)] == [
            ("a", "$number", False),
            ("b", "$string", False),
        ]

    def test_list_items_merged(self):
        """Test that fields missing from some items become optional."""
        shape_id, commands = self.inferrer.infer([{"a": 1, "b": 2}, {"a": 3}])
        state = apply_commands(build([]), commands)
        item = state.shape(state.shape(shape_id).item_shape_id)
        assert {f.name: f.optional for f in state.fields_of(item.shape_id)} == {"a": False, "b": True}

    def test_mixed_kinds_become_one_of(self):
        """Test that differing kinds are merged into a one-of."""
        shape_id, commands = self.inferrer.infer([1, "x", 2])
        state = apply_commands(build([]), commands)
        item = state.shape(state.shape(shape_id).item_shape_id)
        assert item.kind == ShapeKind.ONE_OF
        assert item.choices == ("$number", "$string")

    def test_empty_list(self):
        """Test that an empty list is a list of anything."""
        shape_id, commands = self.inferrer.infer([])
        state = apply_commands(build([]), commands)
        assert state.shape(shape_id).item_shape_id == "$any"

    def test_deterministic_ids(self):
        """Test that the same seed yields the same commands."""
        value = {"a": [{"b": 1}]}
        first = ShapeInferrer(IdGenerator("seed")).infer(value)
        second = ShapeInferrer(IdGenerator("seed")).infer(value)
        assert first == second

    def test_body_shape(self):
        """Test body shapes for content types without parsed bodies."""
        ids = IdGenerator("body")
        assert infer_body_shape(ids, None, False) == (None, [])
        assert infer_body_shape(ids, None, True) == ("$any", [])


class TestDescriptions:
    """Test diff descriptions."""

    def test_unexpected_field(self):
        """Test the description of an undocumented field."""
        state = users_spec()
        diff = only_diff(state, get_user({"id": "x", "name": "n", "extra": 1}))
        description = DiffDescriptionInterpreter(state).interpret(diff)
        assert description.kind == DiffKind.BODY_SHAPE_MISMATCH
        assert "extra" in description.title
        assert "response[200].extra" in description.assertion
        assert "1" in description.assertion
        assert description.example_tags[0].json_path == "$.extra"
        assert description.shape_tags[0].shape_id == "s_user"
        assert description.change_type == "addition"

    def test_type_mismatch_uses_concept_name(self):
        """Test that named shapes are described by name."""
        state = users_spec([
            AddField("f_friend", "s_user", "friend", "s_user", optional=True),
        ])
        diff = only_diff(state, get_user({"id": "x", "name": "n", "friend": 3}))
        description = DiffDescriptionInterpreter(state).interpret(diff)
        assert description.assertion == "Expected User but observed number 3"
        assert description.shape_tags[0].field_id == "f_friend"

    def test_unmatched_status(self):
        """Test the description of an undocumented status code."""
        state = users_spec()
        diff = only_diff(state, get_user(None, status=404))
        description = DiffDescriptionInterpreter(state).interpret(diff)
        assert description.title == "Undocumented 404 response"
        assert description.assertion == "GET /users/{userId} does not declare a 404 response"

    def test_pure(self):
        """Test that the same input yields the same description."""
        state = users_spec()
        diff = only_diff(state, get_user({"id": "x"}))
        interpreter = DiffDescriptionInterpreter(state)
        assert interpreter.interpret(diff).to_dict() == interpreter.interpret(diff).to_dict()


class TestSuggestions:
    """Test suggested command sequences."""

    def test_missing_field(self):
        """Test that a missing field can be made optional or removed."""
        state = users_spec()
        interaction = get_user({"id": "x"})
        diff = only_diff(state, interaction)
        suggestions = SuggestionInterpreter(state).interpret(diff)
        assert [s.commands for s in suggestions] == [
            (SetFieldOptional("f_name", True),),
            (RemoveField("f_name"),),
        ]
        assert all(resolves(state, s, interaction) for s in suggestions)

    def test_unexpected_field(self):
        """Test that an undocumented field can be added optional or required."""
        state = users_spec()
        interaction = get_user({"id": "x", "name": "n", "tags": ["a"]})
        diff = only_diff(state, interaction)
        optional, required = SuggestionInterpreter(state).interpret(diff)
        assert optional.commands[-1].optional is True
        assert required.commands[-1].optional is False
        assert optional.commands[-1].shape_id == "s_user"
        assert optional.commands[-1].name == "tags"
        assert resolves(state, optional, interaction)
        assert resolves(state, required, interaction)

    def test_unexpected_field_with_unusual_name(self):
        """Test that fields named like path syntax still get their observed shape."""
        state = users_spec()
        for name in ("where", "wherenot", "a'b", "a b", "*", "[*]"):
            interaction = get_user({"id": "x", "name": "n", name: 5})
            diff = only_diff(state, interaction)
            optional, _ = SuggestionInterpreter(state).interpret(diff)
            assert optional.commands[-1].name == name
            assert optional.commands[-1].field_shape_id == "$number"
            assert resolves(state, optional, interaction)
            assert DiffDescriptionInterpreter(state).interpret(diff).assertion.endswith("(observed 5)")

    def test_type_mismatch_widen_and_replace(self):
        """Test that a type mismatch can be widened or replaced."""
        state = users_spec()
        interaction = get_user({"id": 7, "name": "n"})
        diff = only_diff(state, interaction)
        widen, replace = SuggestionInterpreter(state).interpret(diff)

        assert widen.commands[-2].kind == ShapeKind.ONE_OF
        assert widen.commands[-2].choices == ("$string", "$number")
        assert widen.commands[-1] == SetFieldShape("f_id", widen.commands[-2].shape_id)
        assert replace.commands == (SetFieldShape("f_id", "$number"),)
        assert resolves(state, widen, interaction)
        assert resolves(state, replace, interaction)

        # Widening keeps the old type valid
        widened = apply_commands(state, widen.commands)
        assert DiffComputer(widened).diff_interaction(get_user({"id": "x", "name": "n"})) == []

    def test_widen_existing_one_of(self):
        """Test that widening a one-of extends its choices."""
        state = users_spec([
            AddShape("s_id", ShapeKind.ONE_OF, choices=("$string", "$number")),
            SetFieldShape("f_id", "s_id"),
        ])
        interaction = get_user({"id": None, "name": "n"})
        widen = SuggestionInterpreter(state).interpret(only_diff(state, interaction))[0]
        assert widen.commands[-2].choices == ("$string", "$number", "$null")
        assert resolves(state, widen, interaction)

    def test_list_item_mismatch(self):
        """Test that list item mismatches re-point the item shape."""
        state = users_spec([
            AddShape("s_tags", ShapeKind.LIST, item_shape_id="$string"),
            AddField("f_tags", "s_user", "tags", "s_tags"),
        ])
        interaction = get_user({"id": "x", "name": "n", "tags": ["a", 1]})
        widen, replace = SuggestionInterpreter(state).interpret(only_diff(state, interaction))
        assert isinstance(widen.commands[-1], SetListItemShape)
        assert resolves(state, widen, interaction)

    def test_root_mismatch(self):
        """Test that a body root mismatch re-points the response body."""
        state = users_spec()
        interaction = get_user([{"id": "x"}])
        widen, replace = SuggestionInterpreter(state).interpret(only_diff(state, interaction))
        assert isinstance(replace.commands[-1], SetResponseBodyShape)
        assert resolves(state, replace, interaction)

    def test_unmatched_status_code(self):
        """Test that an undocumented status can be declared."""
        state = users_spec()
        interaction = get_user({"error": "not found"}, status=404)
        diff = only_diff(state, interaction)
        suggestions = SuggestionInterpreter(state).interpret(diff)
        assert len(suggestions) == 1
        last = suggestions[0].commands[-1]
        assert isinstance(last, AddResponse)
        assert (last.status_code, last.content_type) == (404, JSON)
        assert resolves(state, suggestions[0], interaction)

    def test_unmatched_status_without_body(self):
        """Test that a body-less status is declared without a shape."""
        state = users_spec()
        interaction = get_user(None, status=204)
        suggestion = SuggestionInterpreter(state).interpret(only_diff(state, interaction))[0]
        assert suggestion.commands == (AddResponse("p_users", "GET", 204, NO_CONTENT_TYPE, None),)
        assert suggestion.title == "Add 204 response"

    def test_unmatched_path(self):
        """Test that an unknown URL can become a new endpoint."""
        state = users_spec()
        interaction = Interaction(
            method="POST", path="/orders", status_code=201,
            request_content_type=JSON, request_body={"item": "a", "qty": 2},
            response_content_type=JSON, response_body={"id": 1},
        )
        diff = only_diff(state, interaction)
        suggestion = SuggestionInterpreter(state).interpret(diff)[0]
        assert isinstance(suggestion.commands[0], AddPath)
        assert suggestion.commands[0].path == "/orders"
        assert resolves(state, suggestion, interaction)

    def test_unmatched_method_on_known_path(self):
        """Test that a new method on a known path does not add the path again."""
        state = users_spec()
        interaction = Interaction(method="DELETE", path="/users/1", status_code=204)
        suggestion = SuggestionInterpreter(state).interpret(only_diff(state, interaction))[0]
        assert not any(isinstance(c, AddPath) for c in suggestion.commands)
        assert resolves(state, suggestion, interaction)

    def test_pure(self):
        """Test that the same input yields the same suggestions."""
        state = users_spec()
        diff = only_diff(state, get_user({"id": "x", "name": "n", "extra": {"a": [1]}}))
        interpreter = SuggestionInterpreter(state)
        assert interpreter.interpret(diff) == interpreter.interpret(diff)
        assert diff.mismatch == ShapeMismatch.UNEXPECTED_FIELD
