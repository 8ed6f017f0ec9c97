"""Tests for diff grouping and the region index."""

from trafficdiff import (
    build,
    group_diffs,
    DiffComputer,
    DiffKind,
    Interaction,
    RegionArea,
    RegionKey,
    NO_CONTENT_TYPE,
)
from trafficdiff.commands import AddPath, AddEndpoint, AddShape, AddField, AddRequestBody, AddResponse
from trafficdiff.models import ShapeKind

JSON = "application/json"


def spec():
    return build([
        AddPath("p_users", "/users"),
        AddEndpoint("p_users", "POST"),
        AddShape("s_in", ShapeKind.OBJECT),
        AddField("f_in_name", "s_in", "name", "$string"),
        AddRequestBody("p_users", "POST", JSON, "s_in"),
        AddShape("s_out", ShapeKind.OBJECT),
        AddField("f_out_id", "s_out", "id", "$string"),
        AddResponse("p_users", "POST", 201, JSON, "s_out"),
        AddResponse("p_users", "POST", 400, NO_CONTENT_TYPE, None),
        AddPath("p_health", "/health"),
        AddEndpoint("p_health", "GET"),
        AddResponse("p_health", "GET", 200, NO_CONTENT_TYPE, None),
    ])


def post_user(request_body=None, response_body=None, status=201, request_ct=JSON, response_ct=JSON):
    return Interaction(
        method="POST",
        path="/users",
        status_code=status,
        request_content_type=request_ct if request_body is not None else NO_CONTENT_TYPE,
        request_body=request_body,
        response_content_type=response_ct if response_body is not None else NO_CONTENT_TYPE,
        response_body=response_body,
    )


class TestGrouping:
    """Test collapsing of identical diffs."""

    def setup_method(self):
        self.computer = DiffComputer(spec())

    def index_for(self, interactions, max_examples=0):
        return group_diffs(self.computer.compute(interactions).results, max_examples)

    def test_identical_diffs_collapse(self):
        """Test that two interactions with the same diff yield one entity owning both."""
        first = post_user({"name": "a"}, {"id": "1", "extra": 1})
        second = post_user({"name": "b"}, {"id": "2", "extra": "x"})
        index = self.index_for([first, second])
        assert len(index) == 1
        entity = index.entities[0]
        assert entity.count == 2
        assert entity.interactions == [first, second]
        assert entity.representative is first
        assert index.get(entity) == [first, second]

    def test_distinct_locations_stay_apart(self):
        """Test that different locations produce separate entities."""
        index = self.index_for([
            post_user({"name": "a", "x": 1}, {"id": "1"}),
            post_user({"name": "a"}, {"id": "1", "y": 1}),
        ])
        assert len(index) == 2
        labels = [e.location.label for e in index.entities]
        assert labels == ["request.x", "response[201].y"]

    def test_sorted_entities(self):
        """Test that entities can be listed in key order."""
        index = self.index_for([
            post_user({"name": "a"}, {"id": "1", "y": 1}),
            post_user({"name": "a", "x": 1}, {"id": "1"}),
        ])
        assert [e.location.region for e in index.sorted_entities()] == ["request", "response"]

    def test_max_examples(self):
        """Test that the example cap keeps the count exact."""
        interactions = [post_user({"name": "a"}, {"id": str(i), "extra": i}) for i in range(5)]
        index = self.index_for(interactions, max_examples=2)
        entity = index.entities[0]
        assert entity.count == 5
        assert entity.interactions == interactions[:2]

    def test_filter_out_is_round_trip(self):
        """Test that ignoring and un-ignoring does not change the index."""
        index = self.index_for([
            post_user({"name": "a", "x": 1}, {"id": "1"}),
            post_user({"name": "a"}, {"id": "1", "y": 1}),
        ])
        first, second = index.entities
        assert index.filter_out([first]) == [second]
        assert index.filter_out([first.key]) == [second]
        assert index.filter_out([]) == [first, second]


class TestRegions:
    """Test partitioning by region."""

    def setup_method(self):
        self.interactions = [
            post_user({"name": "a", "x": 1}, {"id": "1"}),
            post_user({"name": "a"}, {"id": "1", "y": 1}),
            post_user({"name": "a"}, None, status=500),
            post_user({"name": "a"}, "<html>", status=400, response_ct="text/html"),
            post_user("raw", {"id": "1"}, request_ct="text/plain"),
            Interaction(method="GET", path="/nope", status_code=404),
        ]
        computation = DiffComputer(spec()).compute(self.interactions)
        self.index = group_diffs(computation.results)

    def test_endpoint_regions(self):
        """Test the per-area views of one endpoint."""
        regions = self.index.list_regions(path_id="p_users", method="POST")
        assert len(regions) == 5
        assert [e.location.label for e in regions.in_request] == ["request.x", "request"]
        assert regions.request_content_types == [JSON]
        assert len(regions.in_request_content_type(JSON)) == 1
        assert regions.status_codes == [201, 400, 500]
        assert [e.kind for e in regions.in_response_with_status_code(400)] == [
            DiffKind.UNMATCHED_RESPONSE_CONTENT_TYPE
        ]
        assert [e.kind for e in regions.in_response_with_status_code(500)] == [
            DiffKind.UNMATCHED_STATUS_CODE
        ]
        assert len(regions.in_response_body_shape(201, JSON)) == 1
        assert len(regions.unmatched_status_code) == 1
        assert len(regions.unmatched_response_content_type) == 1
        assert len(regions.unmatched_request_content_type) == 1
        assert regions.unmatched_path == []

    def test_unmatched_path_region(self):
        """Test that unknown URLs land in the unmatched path region."""
        regions = self.index.list_regions()
        assert [e.location.observed_path for e in regions.unmatched_path] == ["/nope"]
        key = RegionKey(RegionArea.UNMATCHED_PATH)
        assert key in regions.keys()
        assert len(regions.diffs_in(key)) == 1

    def test_empty_iff_no_diffs(self):
        """Test that a region set is empty exactly when no diffs remain."""
        regions = self.index.list_regions(path_id="p_health", method="GET")
        assert regions.is_empty
        assert regions.all() == []

        users = self.index.list_regions(path_id="p_users", method="POST")
        assert not users.is_empty
        ignored_all = self.index.list_regions(ignored=users.all(), path_id="p_users", method="POST")
        assert ignored_all.is_empty

    def test_ignore_round_trip(self):
        """Test that ignoring removes a diff from every region and restoring brings it back."""
        before = self.index.list_regions(path_id="p_users", method="POST")
        target = before.in_request[0]
        after = self.index.list_regions(ignored=[target], path_id="p_users", method="POST")
        assert target not in after.all()
        assert target not in after.in_request
        restored = self.index.list_regions(ignored=[], path_id="p_users", method="POST")
        assert restored.all() == before.all()

    def test_is_active(self):
        """Test which region holds the selected diff."""
        regions = self.index.list_regions(path_id="p_users", method="POST")
        selected = regions.in_response_body_shape(201, JSON)[0]
        body_key = RegionKey(RegionArea.RESPONSE_BODY, "p_users", "POST", 201, JSON)
        status_key = RegionKey(RegionArea.RESPONSE_STATUS, status_code=201)
        request_key = RegionKey(RegionArea.REQUEST_BODY, "p_users", "POST", content_type=JSON)
        assert regions.is_active(body_key, selected)
        assert regions.is_active(status_key, selected)
        assert not regions.is_active(request_key, selected)
        assert not regions.is_active(body_key, None)
