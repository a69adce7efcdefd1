import pytest

from bottleneck_sim.core.enums import DropReason
from bottleneck_sim.core.errors import ConfigurationError, LinkBusyError
from bottleneck_sim.core.link import Link


@pytest.fixture
def link(context):
    return Link(context, 0, 1, data_rate=8e6, propagation_delay=0.002)


def record_arrivals(link):
    arrivals = []
    link.arrival_hooks.append(
        lambda packet: arrivals.append((link.scheduler.now(), packet))
    )
    return arrivals


def test_transmission_delay(link):
    assert link.calculate_transmission_delay(1000) == pytest.approx(0.001)
    assert link.calculate_transmission_delay(0) == 0


def test_packet_arrives_after_transmission_and_propagation(context, link, make_packet):
    arrivals = record_arrivals(link)
    packet = make_packet()
    assert packet.size == 1000

    assert link.send(packet)
    assert link.busy
    context.scheduler.run_until(1.0)

    assert len(arrivals) == 1
    time, delivered = arrivals[0]
    assert time == pytest.approx(0.003)
    assert link.get_total_delay(packet) == pytest.approx(0.003)
    assert delivered.id == packet.id
    assert delivered is not packet
    assert delivered.headers[0] is not packet.headers[0]
    assert not link.busy
    assert link.packets_sent == 1
    assert link.bytes_sent == 1000


def test_transmissions_never_overlap(context, link, make_packet):
    records = []
    link.transmit_hooks.append(records.append)
    arrivals = record_arrivals(link)

    assert link.send(make_packet())
    assert link.send(make_packet())
    context.scheduler.run_until(1.0)

    assert [record.start for record in records] == pytest.approx([0.0, 0.001])
    assert records[1].start >= records[0].end
    assert [time for time, _ in arrivals] == pytest.approx([0.003, 0.004])


def test_full_device_queue_drops(context, link, make_packet):
    assert link.send(make_packet())
    assert link.send(make_packet())
    assert not link.can_accept()

    assert not link.send(make_packet())

    assert len(context.drops) == 1
    assert context.drops[0].reason is DropReason.DEVICE
    assert context.drops[0].location == link.name


def test_transmit_while_busy_raises(link, make_packet):
    link.transmit(make_packet())
    with pytest.raises(LinkBusyError):
        link.transmit(make_packet())


def test_transmit_record_and_completion_callback(context, link, make_packet):
    completed = []
    record = link.transmit(make_packet(), on_complete=completed.append)

    assert record.end == pytest.approx(0.001)
    assert record.arrival == pytest.approx(0.003)
    context.scheduler.run_until(0.0015)
    assert len(completed) == 1


def test_ready_hooks_fire_when_device_frees(context, link, make_packet):
    ready = []
    link.ready_hooks.append(lambda: ready.append(context.now()))
    link.send(make_packet())

    context.scheduler.run_until(1.0)

    assert ready == pytest.approx([0.001])


def test_utilization(context, link, make_packet):
    link.send(make_packet())
    link.send(make_packet())
    context.scheduler.run_until(0.01)

    assert link.utilization(0.01) == pytest.approx(0.2)
    assert link.utilization(0) == 0.0


@pytest.mark.parametrize(
    "rate, delay, device_queue",
    [(0, 0.001, 1), (-5, 0.001, 1), (1e6, -0.001, 1), (1e6, 0.001, -1)],
)
def test_invalid_parameters(context, rate, delay, device_queue):
    with pytest.raises(ConfigurationError):
        Link(context, 0, 1, rate, delay, device_queue)


def test_transmission_record_matches_actual_arrival(context, link, make_packet):
    arrivals = record_arrivals(link)
    records = []
    packet = make_packet()
    context.scheduler.schedule_at(0.5, lambda: records.append(link.transmit(packet)))
    context.scheduler.run_until(1.0)

    (record,) = records
    assert record.start == pytest.approx(0.5)
    assert record.end == pytest.approx(0.501)
    assert record.arrival == pytest.approx(0.5 + link.get_total_delay(packet))
    assert arrivals[0][0] == pytest.approx(record.arrival)
