import os
import sys
from pathlib import Path

import pytest

# Ensure repo root on sys.path for imports from anywhere in tests tree.
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("CHECKOUT_BACKEND", "memory")
os.environ.pop("RESEND_API_KEY", None)
os.environ.pop("SWEEP_TOKEN", None)
os.environ.pop("PAYMENT_LINK_URL", None)

from flidesk_engines.checkout.repository import InMemorySessionStore  # noqa: E402
from flidesk_engines.checkout.service import set_checkout_service  # noqa: E402
from flidesk_engines.checkout.state import set_session_store  # noqa: E402
from flidesk_engines.notifications.service import set_notifier  # noqa: E402
from flidesk_engines.payments.routes import set_webhook_verifier  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_singletons():
    set_session_store(InMemorySessionStore())
    set_checkout_service(None)
    set_notifier(None)
    set_webhook_verifier(None)
    yield
    set_session_store(None)
    set_checkout_service(None)
    set_notifier(None)
    set_webhook_verifier(None)
