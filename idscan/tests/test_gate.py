from idscan.core.gate import ScanDeduplicationGate


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_same_code_is_rejected_while_busy():
    clock = FakeClock()
    gate = ScanDeduplicationGate(cooldown_seconds=2.0, clock=clock)

    assert gate.accept("QR-1") is True
    assert gate.accept("QR-1") is False
    assert gate.accept("QR-2") is False
    assert gate.busy


def test_cooldown_releases_gate():
    clock = FakeClock()
    gate = ScanDeduplicationGate(cooldown_seconds=2.0, clock=clock)
    gate.accept("QR-1")

    clock.now += 1.5
    assert gate.retry_after_seconds() == 0.5
    assert gate.accept("QR-1") is False

    clock.now += 0.5
    assert gate.accept("QR-1") is True


def test_explicit_release_clears_last_code():
    clock = FakeClock()
    gate = ScanDeduplicationGate(cooldown_seconds=60.0, clock=clock)
    gate.accept("QR-1")
    gate.release()

    assert gate.last_code is None
    assert not gate.busy
    assert gate.retry_after_seconds() is None
    assert gate.accept("QR-1") is True
