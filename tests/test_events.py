"""
Event bus tests
"""

import threading

from pothole_system.events import EventBus, PotholeDetected, SourceUnavailable


def test_synchronous_delivery_by_type():
    bus = EventBus(synchronous=True)
    detections, unavailable = [], []
    bus.subscribe(PotholeDetected, detections.append)
    bus.subscribe(SourceUnavailable, unavailable.append)

    bus.publish(PotholeDetected(100))

    assert detections == [PotholeDetected(100)]
    assert unavailable == []
    assert bus.published_count == 1


def test_failing_handler_does_not_block_others():
    bus = EventBus(synchronous=True)
    received = []

    def broken(event):
        raise RuntimeError('ui crashed')

    bus.subscribe(PotholeDetected, broken)
    bus.subscribe(PotholeDetected, received.append)
    bus.publish(PotholeDetected(100))

    assert received == [PotholeDetected(100)]


def test_async_delivery_on_dispatcher_thread():
    bus = EventBus()
    delivered = threading.Event()
    threads = []

    def handler(event):
        threads.append(threading.current_thread().name)
        delivered.set()

    bus.subscribe(PotholeDetected, handler)
    bus.start()
    bus.publish(PotholeDetected(100))

    assert delivered.wait(timeout=2.0)
    bus.stop()
    assert threads == ['EventBus-Dispatch-Thread']


def test_stop_drains_queue():
    bus = EventBus()
    received = []
    bus.subscribe(PotholeDetected, received.append)
    bus.start()
    for t in range(10, 60, 10):
        bus.publish(PotholeDetected(t))
    bus.stop()

    assert [e.event_id for e in received] == [10, 20, 30, 40, 50]


def test_unsubscribe():
    bus = EventBus(synchronous=True)
    received = []
    bus.subscribe(PotholeDetected, received.append)
    bus.unsubscribe(PotholeDetected, received.append)
    bus.publish(PotholeDetected(100))

    assert received == []
