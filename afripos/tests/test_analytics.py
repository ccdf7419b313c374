from afripos.app.analytics import CartAddRecorder


class _Sink:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def record_cart_add(self, product_id, user_id):
        if self.fail:
            raise ConnectionError("analytics endpoint down")
        self.calls.append((product_id, user_id))


def test_inline_recorder_sends_product_and_user(widget):
    sink = _Sink()
    CartAddRecorder(sink, user_id="u-1", inline=True)(widget)
    assert sink.calls == [("p-widget", "u-1")]


def test_background_recorder_delivers_before_shutdown(widget, gadget):
    sink = _Sink()
    rec = CartAddRecorder(sink)
    rec(widget)
    rec(gadget)
    rec.shutdown(wait=True)
    assert sink.calls == [("p-widget", None), ("p-gadget", None)]


def test_failures_are_swallowed(widget, monkeypatch, capsys):
    monkeypatch.setenv("AFRIPOS_LOG_LEVEL", "debug")
    rec = CartAddRecorder(_Sink(fail=True), inline=True)
    rec(widget)
    assert "analytics.cart_add.error" in capsys.readouterr().err


def test_calls_after_shutdown_are_dropped(widget):
    sink = _Sink()
    rec = CartAddRecorder(sink)
    rec.shutdown(wait=True)
    rec(widget)
    assert sink.calls == []
    CartAddRecorder(None)(widget)
