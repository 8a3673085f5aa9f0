from smartcart.detection import Detection
from smartcart.notify import Notifier
from smartcart.results import DetectionStore


def test_replace_keeps_previous_and_bumps_version():
    store = DetectionStore()
    store.replace([Detection(name='Apple')])
    store.replace([Detection(name='Pear'), Detection(name='Plum')])

    assert [d.name for d in store.current()] == ['Pear', 'Plum']
    assert [d.name for d in store.previous()] == ['Apple']
    assert store.count == 2
    assert store.version == 2


def test_current_returns_a_copy():
    store = DetectionStore()
    store.replace([Detection(name='Apple')])

    store.current().clear()
    assert store.count == 1


def test_clear_resets_scans():
    store = DetectionStore()
    store.record_scan()
    store.record_scan()
    store.replace([Detection(name='Apple')])

    store.clear()

    assert store.scans == 0
    assert store.current() == []
    assert store.previous() == []


def test_notifier_drain_and_history():
    notifier = Notifier(maxlen=3)
    for i in range(5):
        notifier.notify(f'Title {i}')
    notifier.error('Camera Error', 'denied')

    pending = notifier.drain()
    assert [n.title for n in pending] == ['Title 3', 'Title 4', 'Camera Error']
    assert pending[-1].variant == 'destructive'
    assert notifier.drain() == []
    assert notifier.recent(1)[0].title == 'Camera Error'
