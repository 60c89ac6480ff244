from gallery_backend.features.index.recency import RecencyEntry, RecencyRing


def test_ring_is_bounded_and_newest_first():
    ring = RecencyRing(limit=3)
    for i in range(5):
        ring.push(f"id{i}", 100 + i)
    assert len(ring) == 3
    assert [e.id for e in ring] == ["id4", "id3", "id2"]


def test_since_is_strict_and_stops_early():
    ring = RecencyRing()
    for i in range(5):
        ring.push(f"id{i}", 10 * i)
    assert [e.id for e in ring.since(20)] == ["id4", "id3"]
    assert ring.since(1000) == []
    assert ring.since(-1)[-1] == RecencyEntry("id0", 0)


def test_discard_and_timestamp_of():
    ring = RecencyRing(limit=4)
    ring.push("a", 1)
    ring.push("b", 2)
    ring.push("a", 3)
    assert ring.timestamp_of("a") == 3
    assert ring.discard("a") == 2
    assert ring.timestamp_of("a") is None
    assert ring.discard("a") == 0
    assert len(ring) == 1

    for i in range(10):
        ring.push(f"x{i}", 10 + i)
    assert len(ring) == 4
