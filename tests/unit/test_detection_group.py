"""Unit tests for detection groups: refresh, reconciliation and merge."""

import pytest

from detection_refinery.core.detections import ChannelDetections, OverlappingDetections, create_container
from detection_refinery.core.errors import IncompatibleDetections, NoContainersFound
from detection_refinery.core.geometry import Region
from tests.fixtures import add_annotation, add_container, create_channel_hierarchy, make_cell


def _centroids(detections):
    return sorted(d.centroid for d in detections)


def _overlap_area(containers):
    total = 0.0
    for i, first in enumerate(containers):
        for second in containers[i + 1:]:
            total += first.region.intersection(second.region).area
    return total


class TestConstruction:
    """Tests for finding containers and indexing detections."""

    def test_finds_container(self, channel_hierarchy):
        hierarchy, _, container = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        assert group.containers == [container]
        assert len(group) == 3
        assert _centroids(group) == [(2, 2), (5, 5), (8, 8)]

    def test_labels(self, channel_hierarchy):
        hierarchy, _, _ = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        assert group.id == "AF568"
        assert group.containers_name == "AF568 cells"
        assert group.container_class == "AF568"
        assert group.detection_classes == ["AF568"]
        assert group.discarded_class == "Other: AF568"

    def test_no_containers(self, empty_hierarchy):
        with pytest.raises(NoContainersFound) as excinfo:
            ChannelDetections("AF568", empty_hierarchy)
        assert excinfo.value.error_code == "E101_NO_CONTAINERS"
        assert "AF568 cells" in str(excinfo.value)

    def test_other_channels_ignored(self, two_channel_hierarchy):
        hierarchy, _ = two_channel_hierarchy
        af647 = ChannelDetections("AF647", hierarchy)
        assert len(af647) == 2
        assert len(af647.containers) == 1

    def test_discarded_detections_not_indexed(self, channel_hierarchy):
        hierarchy, _, container = channel_hierarchy
        container.detection_children()[0].classification = "Other: AF568"
        group = ChannelDetections("AF568", hierarchy)
        assert len(group) == 2
        assert group.is_channel_detection(container.detection_children()[0], include_discarded=True)
        assert not group.is_channel_detection(container.detection_children()[0])

    def test_is_empty(self, channel_hierarchy):
        hierarchy, _, container = channel_hierarchy
        for detection in container.detection_children():
            detection.classification = "Other: AF568"
        group = ChannelDetections("AF568", hierarchy)
        assert group.is_empty()
        assert len(group) == 0


class TestReconcilePair:
    """Tests for resolving a new container overlapping a known one."""

    @pytest.fixture
    def overlapping_setup(self, channel_hierarchy):
        hierarchy, annotation, old = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        region = add_annotation(hierarchy, 5, 5, 10, 10, name="Hippocampus")
        new = add_container(hierarchy, region, "AF568", [(7.5, 7.5), (12, 12)])
        return hierarchy, group, old, new

    def test_new_region_shrinks_to_remainder(self, overlapping_setup):
        _, group, old, new = overlapping_setup
        group.reconcile_pair(old, new)
        expected = Region.rectangle(5, 5, 10, 10).difference(Region.rectangle(0, 0, 10, 10))
        assert new.region == expected
        assert new.region.area == pytest.approx(75)
        assert new.region.contains_point(12, 7)
        assert not new.region.contains_point(7, 7)

    def test_new_detections_inside_old_are_moved(self, overlapping_setup):
        _, group, old, new = overlapping_setup
        group.reconcile_pair(old, new)
        assert (7.5, 7.5) in _centroids(old.detection_children())
        assert _centroids(new.detection_children()) == [(12, 12)]

    def test_stale_detections_are_removed(self, overlapping_setup):
        hierarchy, group, old, new = overlapping_setup
        stale = next(d for d in old.detection_children() if d.centroid == (8, 8))
        group.reconcile_pair(old, new)
        assert not hierarchy.contains(stale)
        # (5, 5) lies on the overlap's boundary, (2, 2) outside of it
        assert _centroids(old.detection_children()) == [(2, 2), (5, 5), (7.5, 7.5)]

    def test_discarded_stale_detections_are_removed(self, overlapping_setup):
        hierarchy, group, old, new = overlapping_setup
        stale = next(d for d in old.detection_children() if d.centroid == (8, 8))
        stale.classification = "Other: AF568"
        group.reconcile_pair(old, new)
        assert not hierarchy.contains(stale)

    def test_other_channel_detections_untouched(self, overlapping_setup):
        hierarchy, group, old, new = overlapping_setup
        other = add_container(hierarchy, old.parent, "AF647", [(8, 8)])
        group.reconcile_pair(old, new)
        assert len(other.detection_children()) == 1


class TestRefresh:
    """Tests for refresh."""

    def test_overlapping_container_reconciled(self, channel_hierarchy):
        hierarchy, _, old = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        region = add_annotation(hierarchy, 5, 5, 10, 10, name="Hippocampus")
        new = add_container(hierarchy, region, "AF568", [(7.5, 7.5), (12, 12)])

        group.refresh()

        assert {id(c) for c in group.containers} == {id(old), id(new)}
        assert _overlap_area(group.containers) == pytest.approx(0)
        assert _centroids(group) == [(2, 2), (5, 5), (7.5, 7.5), (12, 12)]

    def test_subsumed_container_removed(self, channel_hierarchy):
        hierarchy, _, old = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        spot = add_annotation(hierarchy, 1, 1, 3, 3, name="Spot")
        new = add_container(hierarchy, spot, "AF568", [(3, 3)])

        group.refresh()

        assert group.containers == [old]
        assert not hierarchy.contains(new)
        assert _centroids(group) == [(3, 3), (5, 5), (8, 8)]

    def test_empty_container_removed(self, channel_hierarchy):
        hierarchy, _, old = channel_hierarchy
        region = add_annotation(hierarchy, 14, 14, 4, 4, name="Empty")
        empty = add_container(hierarchy, region, "AF568", [])
        group = ChannelDetections("AF568", hierarchy)
        assert group.containers == [old]
        assert not hierarchy.contains(empty)
        assert all(c.children for c in group.containers)

    def test_disjoint_new_container_added(self, channel_hierarchy):
        hierarchy, _, old = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        region = add_annotation(hierarchy, 12, 12, 6, 6, name="Thalamus")
        add_container(hierarchy, region, "AF568", [(14, 14), (16, 16)])
        group.refresh()
        assert len(group.containers) == 2
        assert len(group) == 5
        assert old.region == Region.rectangle(0, 0, 10, 10)

    def test_failed_refresh_keeps_previous_state(self, channel_hierarchy):
        hierarchy, _, container = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        index = group.index
        hierarchy.remove_object(container)
        with pytest.raises(NoContainersFound):
            group.refresh()
        assert group.containers == [container]
        assert group.index is index
        assert len(group) == 3

    def test_failed_refresh_keeps_hierarchy_edits(self, channel_hierarchy):
        hierarchy, _, container = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        hierarchy.remove_objects(container.detection_children())
        with pytest.raises(NoContainersFound):
            group.refresh()
        # the emptied container is gone from the hierarchy, not from the group
        assert not hierarchy.contains(container)
        assert group.containers == [container]

    def test_refresh_notifies_listeners(self, channel_hierarchy):
        hierarchy, _, _ = channel_hierarchy
        events = []
        hierarchy.add_listener(events.append)
        group = ChannelDetections("AF568", hierarchy)
        assert any(e.kind == "structure" and e.source is group for e in events)


class TestMerge:
    """Tests for merging compatible groups."""

    @pytest.fixture
    def merge_setup(self, channel_hierarchy):
        hierarchy, _, cortex_cells = channel_hierarchy
        striatum = add_annotation(hierarchy, 10, 0, 8, 10, name="Striatum")
        striatum_cells = add_container(hierarchy, striatum, "AF568", [(15, 5)])
        this = ChannelDetections("AF568", hierarchy)
        patch = add_annotation(hierarchy, 6, 2, 8, 4, name="Patch")
        extra = add_container(hierarchy, patch, "AF568", [(7, 3), (8, 4), (12, 4)])
        other = ChannelDetections("AF568", hierarchy)
        return hierarchy, this, other, cortex_cells, striatum_cells, extra

    def test_merge_moves_detections(self, merge_setup):
        hierarchy, this, other, cortex_cells, striatum_cells, extra = merge_setup
        assert len(this) == 4
        this.merge(other)
        assert len(this) == 7
        cortex = _centroids(cortex_cells.detection_children())
        assert (7, 3) in cortex and (8, 4) in cortex
        assert (12, 4) in _centroids(striatum_cells.detection_children())

    def test_merge_removes_emptied_container(self, merge_setup):
        hierarchy, this, other, _, _, extra = merge_setup
        this.merge(other)
        assert not hierarchy.contains(extra)
        assert all(id(c) != id(extra) for c in this.containers)

    def test_merged_groups_are_equal(self, merge_setup):
        _, this, other, _, _, _ = merge_setup
        assert this != other
        this.merge(other)
        assert this == other
        assert this.containers_name == other.containers_name

    def test_merge_removes_stale_duplicates(self, merge_setup):
        hierarchy, this, other, cortex_cells, _, _ = merge_setup
        stale = make_cell(9, 5, classification="AF568")
        hierarchy.add_object_below_parent(cortex_cells, stale)
        this.refresh()
        this.merge(other)
        assert not hierarchy.contains(stale)

    def test_merge_partially_adopted_container(self, channel_hierarchy):
        hierarchy, _, cortex_cells = channel_hierarchy
        this = ChannelDetections("AF568", hierarchy)
        patch = add_annotation(hierarchy, 6, 2, 8, 4, name="Patch")
        extra = add_container(hierarchy, patch, "AF568", [(7, 3), (8, 4), (12, 4)])
        other = ChannelDetections("AF568", hierarchy)

        this.merge(other)

        assert _centroids(cortex_cells.detection_children()) == [(2, 2), (5, 5), (7, 3), (8, 4), (8, 8)]
        assert _centroids(extra.detection_children()) == [(12, 4)]
        assert hierarchy.contains(extra)
        assert extra.region == Region.rectangle(10, 2, 4, 4)
        assert len(this) == 6
        assert len(hierarchy.detections()) == 6
        assert this == other
        assert _overlap_area(this.containers) == 0

    def test_merge_with_itself_is_noop(self, channel_hierarchy):
        hierarchy, _, container = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        group.merge(group)
        group.merge(ChannelDetections("AF568", hierarchy))
        assert group.containers == [container]
        assert len(group) == 3

    def test_merge_incompatible_id(self, two_channel_hierarchy):
        hierarchy, _ = two_channel_hierarchy
        af568 = ChannelDetections("AF568", hierarchy)
        af647 = ChannelDetections("AF647", hierarchy)
        with pytest.raises(IncompatibleDetections):
            af568.merge(af647)

    def test_merge_incompatible_hierarchy(self):
        first, _, _ = create_channel_hierarchy("AF568")
        second, _, _ = create_channel_hierarchy("AF568")
        with pytest.raises(IncompatibleDetections) as excinfo:
            ChannelDetections("AF568", first).merge(ChannelDetections("AF568", second))
        assert excinfo.value.error_code == "E103_INCOMPATIBLE_DETECTIONS"


class TestEquality:
    """Tests for compatibility and equality."""

    def test_same_containers_are_equal(self, channel_hierarchy):
        hierarchy, _, _ = channel_hierarchy
        first = ChannelDetections("AF568", hierarchy)
        second = ChannelDetections("AF568", hierarchy)
        assert first == second
        assert hash(first) == hash(second)
        assert first.is_compatible_with(second)

    def test_different_types_are_not_equal(self, two_channel_hierarchy):
        hierarchy, _ = two_channel_hierarchy
        af568 = ChannelDetections("AF568", hierarchy)
        af647 = ChannelDetections("AF647", hierarchy)
        overlaps = OverlappingDetections(af568, [af647], hierarchy, compute=True)
        assert overlaps != af568
        assert not overlaps.is_compatible_with(af568)
        assert af568 != None  # noqa: E711

    def test_disjoint_groups_do_not_overlap(self, channel_hierarchy):
        hierarchy, _, _ = channel_hierarchy
        region = add_annotation(hierarchy, 12, 12, 6, 6, name="Thalamus")
        add_container(hierarchy, region, "AF647", [(14, 14)])
        af568 = ChannelDetections("AF568", hierarchy)
        af647 = ChannelDetections("AF647", hierarchy)
        for cell in af647:
            assert af568.overlap_query(cell) is None
        for cell in af568:
            assert af568.overlap_query(cell) is cell


class TestCreateContainer:
    """Tests for container creation."""

    def test_creates_locked_child(self, empty_hierarchy):
        annotation = add_annotation(empty_hierarchy, 0, 0, 5, 5, name="Cortex")
        container = create_container(empty_hierarchy, annotation, "AF568 cells", "AF568")
        assert container.parent is annotation
        assert container.locked
        assert container.name == "AF568 cells"
        assert container.classification == "AF568"
        assert container.region == annotation.region

    def test_overwrite_reuses_and_empties(self, channel_hierarchy):
        hierarchy, annotation, container = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        reused = group.create_container(annotation, overwrite=True)
        assert reused is container
        assert container.detection_children() == []

    def test_without_overwrite_duplicates(self, channel_hierarchy):
        hierarchy, annotation, container = channel_hierarchy
        group = ChannelDetections("AF568", hierarchy)
        created = group.create_container(annotation)
        assert created is not container
        assert len([c for c in annotation.children if c.name == "AF568 cells"]) == 2
