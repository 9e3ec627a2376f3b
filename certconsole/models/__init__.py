# certconsole/models/__init__.py
# Import all models here so SQLAlchemy registers them into Base.metadata.

from certconsole.models.payment_attempt import PaymentAttempt  # noqa: F401
