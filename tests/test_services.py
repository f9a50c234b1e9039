"""Tests for hudisim.services: compaction, cleaning, partition creation.

Tests:
- schedule_compaction: MoR only, REQUESTED compaction with no payload
- run_scheduled_compactions: base = B + D, deltas cleared, groups without
  deltas untouched, one merge pass for many requests, no-op paths
- clean_older_versions: keeps newest by creation time, deltas untouched,
  emits one completed clean instant, keep=0, keep<0 rejected
- add_partition: fresh label, no instant
"""

import pytest

from hudisim.clock import InstantTimeGenerator, ManualClock, SequentialIdGenerator
from hudisim.filegroup import FileGroupStore
from hudisim.services import TableServices
from hudisim.timeline import InstantState, InstantType, Timeline
from hudisim.writer import WriteMode

MOR = WriteMode.MERGE_ON_READ
COW = WriteMode.COPY_ON_WRITE


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class Harness:

    def __init__(self, partitions=("p0",)):
        self.clock = ManualClock()
        self.store = FileGroupStore(self.clock, SequentialIdGenerator())
        self.timeline = Timeline()
        self.times = InstantTimeGenerator(self.clock)
        self.services = TableServices(self.store, self.timeline, self.times)
        self.ids = [self.store.create_file_group(p).id for p in partitions]

    def base(self, gid, rows):
        return self.store.append_base(gid, rows, self.times.next())

    def delta(self, gid, rows):
        return self.store.append_delta(gid, rows, self.times.next())


# ---------------------------------------------------------------------------
# Compaction
# ---------------------------------------------------------------------------

class TestScheduleCompaction:

    def test_records_requested_instant(self):
        h = Harness()
        instant = h.services.schedule_compaction(MOR)
        assert instant.type == InstantType.COMPACTION
        assert instant.state == InstantState.REQUESTED
        assert instant.record_count == 0
        assert instant.written_records == ()
        assert h.timeline.find(instant.instant_time) == instant

    def test_ignored_under_cow(self):
        h = Harness()
        assert h.services.schedule_compaction(COW) is None
        assert len(h.timeline) == 0


class TestRunScheduledCompactions:

    def test_merges_base_and_deltas(self):
        h = Harness()
        gid = h.ids[0]
        h.base(gid, 6)
        h.delta(gid, 2)
        h.delta(gid, 3)
        h.services.schedule_compaction(MOR)
        result = h.services.run_scheduled_compactions(MOR)
        group = h.store.get(gid)
        assert group.base_rows == 11
        assert [b.version for b in group.base_files] == [1, 2]
        assert group.delta_files == ()
        assert result.merged == ((gid, 5),)
        assert result.rows_merged == 5

    def test_groups_without_deltas_untouched(self):
        h = Harness(partitions=("p0", "p1"))
        h.base(h.ids[0], 4)
        h.delta(h.ids[1], 1)
        h.services.schedule_compaction(MOR)
        h.services.run_scheduled_compactions(MOR)
        assert len(h.store.get(h.ids[0]).base_files) == 1
        assert h.store.get(h.ids[1]).base_rows == 1

    def test_instants_completed_with_completion_time(self):
        h = Harness()
        h.delta(h.ids[0], 1)
        scheduled = h.services.schedule_compaction(MOR)
        result = h.services.run_scheduled_compactions(MOR)
        done = h.timeline.find(scheduled.instant_time)
        assert done.is_completed
        assert done.completion_time == result.compaction_time
        assert h.store.get(h.ids[0]).latest_base.instant_time == result.compaction_time

    def test_compaction_time_is_fresh(self):
        h = Harness()
        last = h.delta(h.ids[0], 1).instant_time
        scheduled = h.services.schedule_compaction(MOR)
        result = h.services.run_scheduled_compactions(MOR)
        assert result.compaction_time > last
        assert result.compaction_time > scheduled.instant_time
        assert result.compaction_time not in h.timeline

    def test_many_requests_one_pass(self):
        h = Harness()
        gid = h.ids[0]
        h.delta(gid, 2)
        h.services.schedule_compaction(MOR)
        h.services.schedule_compaction(MOR)
        h.services.schedule_compaction(MOR)
        result = h.services.run_scheduled_compactions(MOR)
        assert len(result.instants) == 3
        assert all(i.is_completed for i in result.instants)
        group = h.store.get(gid)
        assert len(group.base_files) == 1
        assert group.base_rows == 2

    def test_nothing_pending(self):
        h = Harness()
        h.delta(h.ids[0], 1)
        assert h.services.run_scheduled_compactions(MOR) is None
        assert len(h.store.get(h.ids[0]).delta_files) == 1

    def test_ignored_under_cow(self):
        h = Harness()
        h.delta(h.ids[0], 1)
        scheduled = h.services.schedule_compaction(MOR)
        assert h.services.run_scheduled_compactions(COW) is None
        assert h.timeline.find(scheduled.instant_time).state == InstantState.REQUESTED
        assert len(h.store.get(h.ids[0]).delta_files) == 1

    def test_completed_requests_not_rerun(self):
        h = Harness()
        h.delta(h.ids[0], 1)
        h.services.schedule_compaction(MOR)
        h.services.run_scheduled_compactions(MOR)
        assert h.services.run_scheduled_compactions(MOR) is None


# ---------------------------------------------------------------------------
# Cleaning
# ---------------------------------------------------------------------------

class TestCleanOlderVersions:

    def test_keep_one(self):
        h = Harness()
        gid = h.ids[0]
        for rows in (1, 2, 3):
            h.base(gid, rows)
        newest = h.store.get(gid).latest_base
        result = h.services.clean_older_versions(1)
        assert h.store.get(gid).base_files == (newest,)
        assert result.slices_removed == 2

    def test_keeps_newest_by_creation_time(self):
        h = Harness()
        gid = h.ids[0]
        slices = [h.base(gid, 1) for _ in range(4)]
        h.services.clean_older_versions(2)
        kept = h.store.get(gid).base_files
        assert [b.id for b in kept] == [slices[2].id, slices[3].id]

    def test_ties_broken_by_version(self):
        h = Harness()
        h.clock.set_step(0)
        gid = h.ids[0]
        slices = [h.base(gid, 1) for _ in range(3)]
        h.services.clean_older_versions(1)
        assert h.store.get(gid).base_files == (slices[-1],)

    def test_deltas_untouched(self):
        h = Harness()
        gid = h.ids[0]
        h.base(gid, 1)
        h.base(gid, 1)
        h.delta(gid, 4)
        h.services.clean_older_versions(0)
        group = h.store.get(gid)
        assert group.base_files == ()
        assert group.delta_rows == 4

    def test_groups_at_or_under_keep_untouched(self):
        h = Harness(partitions=("p0", "p1"))
        h.base(h.ids[0], 1)
        h.base(h.ids[1], 1)
        h.base(h.ids[1], 1)
        result = h.services.clean_older_versions(1)
        assert len(h.store.get(h.ids[0]).base_files) == 1
        assert result.removed == ((h.ids[1], 1),)

    def test_emits_completed_clean_instant(self):
        h = Harness()
        result = h.services.clean_older_versions(1)
        instant = h.timeline.find(result.instant.instant_time)
        assert instant.type == InstantType.CLEAN
        assert instant.is_completed
        assert instant.record_count == 0

    def test_negative_keep_rejected(self):
        h = Harness()
        with pytest.raises(ValueError):
            h.services.clean_older_versions(-1)
        assert len(h.timeline) == 0


# ---------------------------------------------------------------------------
# Partitions
# ---------------------------------------------------------------------------

class TestAddPartition:

    def test_fresh_label(self):
        h = Harness(partitions=("p0", "p1"))
        group = h.services.add_partition()
        assert group.partition == "p2"
        assert group.base_files == () and group.delta_files == ()

    def test_label_skips_taken(self):
        h = Harness(partitions=("p2", "p0"))
        assert h.services.add_partition().partition == "p3"

    def test_no_instant(self):
        h = Harness()
        h.services.add_partition()
        assert len(h.timeline) == 0
