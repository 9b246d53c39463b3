"""
HD Notes Backend: OTP Service Tests
=====================================

What:  Issuance and verification of one-time codes against a real SQLite
       database.

What we test:
    ✅ Re-issuing supersedes the previous code
    ✅ A code verifies once; the second submission is already_consumed
    ✅ Expiry, attempt ceiling, wrong code
    ✅ Signup profile rules and duplicate accounts
    ✅ Sign-in for unknown emails sends nothing and stores an unusable challenge
    ✅ Resend cooldown, identical for registered and unknown sign-in emails
    ✅ Competing verifications: exactly one consumes the challenge
    ✅ Delivery failure and dispatch timeout
    ✅ Only a salted hash of the code is stored
"""

import asyncio
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from app.exceptions import (
    AuthChallengeError,
    ConflictError,
    NotificationDeliveryError,
    RateLimitExceededError,
    ValidationError,
)
from app.models.otp_challenge import PURPOSE_SIGNIN, PURPOSE_SIGNUP, OtpChallenge
from app.services.credential_store import CredentialStore, credential_store
from app.services.otp_service import OtpService, VerifiedLogin, normalize_email

EMAIL = "ada@example.com"


def _fixed_codes(monkeypatch, service, *codes):
    it = iter(codes)
    monkeypatch.setattr(service, "generate_code", lambda: next(it))


async def _register(otp_service, db_session, notifier, profile, email=EMAIL):
    await otp_service.request_code(db_session, email, PURPOSE_SIGNUP, **profile)
    login = await otp_service.verify_code(
        db_session, email, PURPOSE_SIGNUP, notifier.last_code(email)
    )
    await db_session.commit()
    return login


class TestNormalizeEmail:

    def test_strips_and_lowercases(self):
        assert normalize_email("  Ada@Example.COM ") == "ada@example.com"

    @pytest.mark.parametrize("bad", ["", "   ", "ada", "ada@", "@example.com", "a b@example.com"])
    def test_rejects_malformed(self, bad):
        with pytest.raises(ValidationError) as exc:
            normalize_email(bad)
        assert exc.value.field == "email"


class TestRequestCode:

    @pytest.mark.asyncio
    async def test_signup_stores_hash_not_code(self, otp_service, db_session, notifier, profile):
        issued = await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

        assert issued.delivered is True
        assert len(notifier.sent) == 1
        assert notifier.ttls == [600]
        to_email, code, purpose = notifier.sent[0]
        assert (to_email, purpose) == (EMAIL, PURPOSE_SIGNUP)
        assert len(code) == 6 and code.isdigit()

        challenge = await credential_store.get_challenge(db_session, EMAIL, PURPOSE_SIGNUP)
        assert challenge is not None
        assert challenge.code_hash != code
        assert challenge.code_hash == otp_service.hash_code(code, challenge.salt)
        assert challenge.full_name == "Ada Lovelace"
        assert challenge.attempt_count == 0
        assert challenge.consumed is False

    @pytest.mark.asyncio
    async def test_email_is_normalized(self, otp_service, db_session, notifier, profile):
        await otp_service.request_code(db_session, "  ADA@Example.com", PURPOSE_SIGNUP, **profile)
        assert notifier.sent[0][0] == EMAIL

    @pytest.mark.asyncio
    async def test_invalid_email_rejected(self, otp_service, db_session, notifier, profile):
        with pytest.raises(ValidationError):
            await otp_service.request_code(db_session, "not-an-email", PURPOSE_SIGNUP, **profile)
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_signup_requires_full_name(self, otp_service, db_session):
        with pytest.raises(ValidationError) as exc:
            await otp_service.request_code(
                db_session, EMAIL, PURPOSE_SIGNUP, full_name="  ", date_of_birth=date(1990, 1, 1)
            )
        assert exc.value.field == "fullName"

    @pytest.mark.asyncio
    async def test_signup_requires_date_of_birth(self, otp_service, db_session):
        with pytest.raises(ValidationError) as exc:
            await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, full_name="Ada")
        assert exc.value.field == "dateOfBirth"

    @pytest.mark.asyncio
    async def test_signup_rejects_future_date_of_birth(self, otp_service, db_session, clock):
        tomorrow = clock().date() + timedelta(days=1)
        with pytest.raises(ValidationError):
            await otp_service.request_code(
                db_session, EMAIL, PURPOSE_SIGNUP, full_name="Ada", date_of_birth=tomorrow
            )

    @pytest.mark.asyncio
    async def test_signup_for_registered_email_conflicts(
        self, otp_service, db_session, notifier, profile, clock
    ):
        await _register(otp_service, db_session, notifier, profile)
        clock.advance(60)

        with pytest.raises(ConflictError):
            await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

    @pytest.mark.asyncio
    async def test_signin_for_unknown_email_sends_nothing(self, otp_service, db_session, notifier):
        issued = await otp_service.request_code(db_session, "nobody@example.com", PURPOSE_SIGNIN)

        assert issued.delivered is None
        assert issued.email == "nobody@example.com"
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_signin_for_unknown_email_stores_unusable_challenge(
        self, otp_service, db_session, monkeypatch
    ):
        _fixed_codes(monkeypatch, otp_service, "123456")
        await otp_service.request_code(db_session, "nobody@example.com", PURPOSE_SIGNIN)

        challenge = await credential_store.get_challenge(
            db_session, "nobody@example.com", PURPOSE_SIGNIN
        )
        assert challenge is not None
        assert len(challenge.code_hash) <= 64
        for guess in ("123456", "000000", ""):
            assert challenge.code_hash != otp_service.hash_code(guess, challenge.salt)

        with pytest.raises(AuthChallengeError) as exc:
            await otp_service.verify_code(db_session, "nobody@example.com", PURPOSE_SIGNIN, "123456")
        assert exc.value.reason == AuthChallengeError.MISMATCH

    @pytest.mark.asyncio
    async def test_signin_cooldown_ignores_registration(
        self, otp_service, db_session, notifier, profile, clock
    ):
        await _register(otp_service, db_session, notifier, profile)
        clock.advance(60)

        outcomes = {}
        for email in (EMAIL, "nobody@example.com"):
            await otp_service.request_code(db_session, email, PURPOSE_SIGNIN)
            with pytest.raises(RateLimitExceededError) as exc:
                await otp_service.request_code(db_session, email, PURPOSE_SIGNIN)
            outcomes[email] = exc.value.retry_after

        assert outcomes == {EMAIL: 30, "nobody@example.com": 30}

    @pytest.mark.asyncio
    async def test_resend_within_cooldown_is_rate_limited(
        self, otp_service, db_session, profile, clock
    ):
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        clock.advance(10)

        with pytest.raises(RateLimitExceededError) as exc:
            await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        assert exc.value.retry_after == 20

    @pytest.mark.asyncio
    async def test_cooldown_is_per_purpose(self, otp_service, db_session, notifier, profile):
        await _register(otp_service, db_session, notifier, profile)
        # signup code was just issued; a signin code is a different pair
        issued = await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNIN)
        assert issued.delivered is True

    @pytest.mark.asyncio
    async def test_delivery_failure_raises_after_storing(
        self, otp_service, db_session, notifier, profile
    ):
        notifier.fail = True

        with pytest.raises(NotificationDeliveryError):
            await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

        challenge = await credential_store.get_challenge(db_session, EMAIL, PURPOSE_SIGNUP)
        assert challenge is not None

    @pytest.mark.asyncio
    async def test_slow_delivery_continues_in_background(
        self, otp_service, db_session, notifier, profile
    ):
        notifier.delay = 0.2
        otp_service.dispatch_timeout = 0.01

        issued = await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

        assert issued.delivered is False
        assert notifier.sent == []
        await asyncio.gather(*list(otp_service._background))
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_notifier_gets_service_ttl(
        self, notifier, session_service, clock, db_session, profile
    ):
        service = OtpService(
            notifier=notifier,
            sessions=session_service,
            clock=clock,
            ttl_seconds=300,
            secret_key="test-secret-key-not-real",
        )

        await service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

        assert notifier.ttls == [300]

    @pytest.mark.asyncio
    async def test_unknown_purpose_rejected(self, otp_service, db_session):
        with pytest.raises(ValidationError):
            await otp_service.request_code(db_session, EMAIL, "reset")


class TestVerifyCode:

    @pytest.mark.asyncio
    async def test_signup_creates_user_and_session(
        self, otp_service, db_session, notifier, profile, session_service
    ):
        login = await _register(otp_service, db_session, notifier, profile)

        assert login.user.email == EMAIL
        assert login.user.full_name == "Ada Lovelace"
        assert login.user.date_of_birth == date(1990, 12, 10)

        context = await session_service.authenticate(db_session, login.session.token)
        assert context.user_id == login.user.id

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, otp_service, db_session, notifier, profile):
        await _register(otp_service, db_session, notifier, profile)

        with pytest.raises(AuthChallengeError) as exc:
            await otp_service.verify_code(
                db_session, EMAIL, PURPOSE_SIGNUP, notifier.last_code(EMAIL)
            )
        assert exc.value.reason == AuthChallengeError.ALREADY_CONSUMED

    @pytest.mark.asyncio
    async def test_reissue_supersedes_previous_code(
        self, otp_service, db_session, profile, clock, monkeypatch
    ):
        _fixed_codes(monkeypatch, otp_service, "111111", "222222")
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        clock.advance(31)
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

        with pytest.raises(AuthChallengeError) as exc:
            await otp_service.verify_code(db_session, EMAIL, PURPOSE_SIGNUP, "111111")
        assert exc.value.reason == AuthChallengeError.MISMATCH

        login = await otp_service.verify_code(db_session, EMAIL, PURPOSE_SIGNUP, "222222")
        assert login.user.email == EMAIL

    @pytest.mark.asyncio
    async def test_expired_code_rejected(self, otp_service, db_session, notifier, profile, clock):
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        clock.advance(600 + 1)

        with pytest.raises(AuthChallengeError) as exc:
            await otp_service.verify_code(
                db_session, EMAIL, PURPOSE_SIGNUP, notifier.last_code(EMAIL)
            )
        assert exc.value.reason == AuthChallengeError.EXPIRED

    @pytest.mark.asyncio
    async def test_code_valid_until_expiry(self, otp_service, db_session, notifier, profile, clock):
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        clock.advance(600)

        login = await otp_service.verify_code(
            db_session, EMAIL, PURPOSE_SIGNUP, notifier.last_code(EMAIL)
        )
        assert login.user.email == EMAIL

    @pytest.mark.asyncio
    async def test_attempt_ceiling_locks_challenge(
        self, otp_service, db_session, notifier, profile, monkeypatch
    ):
        _fixed_codes(monkeypatch, otp_service, "123456")
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

        for _ in range(5):
            with pytest.raises(AuthChallengeError) as exc:
                await otp_service.verify_code(db_session, EMAIL, PURPOSE_SIGNUP, "000000")
            assert exc.value.reason == AuthChallengeError.MISMATCH

        with pytest.raises(AuthChallengeError) as exc:
            await otp_service.verify_code(db_session, EMAIL, PURPOSE_SIGNUP, "123456")
        assert exc.value.reason == AuthChallengeError.TOO_MANY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_failed_attempts_survive_rollback(
        self, otp_service, db_session, profile, monkeypatch
    ):
        _fixed_codes(monkeypatch, otp_service, "123456")
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

        with pytest.raises(AuthChallengeError):
            await otp_service.verify_code(db_session, EMAIL, PURPOSE_SIGNUP, "000000")
        await db_session.rollback()

        challenge = await credential_store.get_challenge(db_session, EMAIL, PURPOSE_SIGNUP)
        assert challenge.attempt_count == 1

    @pytest.mark.asyncio
    async def test_no_challenge(self, otp_service, db_session):
        with pytest.raises(AuthChallengeError) as exc:
            await otp_service.verify_code(db_session, EMAIL, PURPOSE_SIGNIN, "123456")
        assert exc.value.reason == AuthChallengeError.NO_CHALLENGE

    @pytest.mark.asyncio
    async def test_signup_profile_falls_back_to_issuance(
        self, otp_service, db_session, notifier, profile
    ):
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)

        login = await otp_service.verify_code(
            db_session, EMAIL, PURPOSE_SIGNUP, notifier.last_code(EMAIL), full_name="Countess Ada"
        )
        assert login.user.full_name == "Countess Ada"
        assert login.user.date_of_birth == profile["date_of_birth"]

    @pytest.mark.asyncio
    async def test_signin_returns_existing_user(
        self, otp_service, db_session, notifier, profile, clock
    ):
        registered = await _register(otp_service, db_session, notifier, profile)

        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNIN)
        login = await otp_service.verify_code(
            db_session, EMAIL, PURPOSE_SIGNIN, notifier.last_code(EMAIL, PURPOSE_SIGNIN)
        )

        assert login.user.id == registered.user.id
        assert login.session.token != registered.session.token

    @pytest.mark.asyncio
    async def test_concurrent_signup_duplicate_conflicts(
        self, otp_service, db_session, notifier, profile
    ):
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        await credential_store.create_user(
            db_session,
            email=EMAIL,
            full_name="Someone Else",
            date_of_birth=date(1980, 1, 1),
            created_at=otp_service.clock(),
        )

        with pytest.raises(ConflictError):
            await otp_service.verify_code(
                db_session, EMAIL, PURPOSE_SIGNUP, notifier.last_code(EMAIL)
            )


class _InterleavingStore(CredentialStore):
    """Runs `between` right after the attempt is counted, before consumption."""

    def __init__(self, between):
        self.between = between

    async def register_attempt(self, db, challenge_id):
        attempts = await super().register_attempt(db, challenge_id)
        await self.between(db, challenge_id)
        return attempts


class TestConcurrentVerification:

    def _service(self, otp_service, store):
        return OtpService(
            notifier=otp_service.notifier,
            sessions=otp_service.sessions,
            store=store,
            clock=otp_service.clock,
            ttl_seconds=otp_service.ttl_seconds,
            max_attempts=otp_service.max_attempts,
            secret_key="test-secret-key-not-real",
        )

    @pytest.mark.asyncio
    async def test_upsert_keeps_one_row_with_latest_hash(self, db_session, clock):
        for code_hash in ("a" * 64, "b" * 64):
            await credential_store.upsert_challenge(
                db_session,
                email=EMAIL,
                purpose=PURPOSE_SIGNIN,
                code_hash=code_hash,
                salt="salt",
                issued_at=clock(),
                expires_at=clock() + timedelta(minutes=10),
            )
        await db_session.commit()

        rows = (
            await db_session.execute(select(OtpChallenge).where(OtpChallenge.email == EMAIL))
        ).scalars().all()
        assert len(rows) == 1
        assert rows[0].code_hash == "b" * 64

    @pytest.mark.asyncio
    async def test_consume_rejects_superseded_hash(self, otp_service, db_session, profile):
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        challenge = await credential_store.get_challenge(db_session, EMAIL, PURPOSE_SIGNUP)

        assert await credential_store.consume_challenge(db_session, challenge.id, "f" * 64) is False
        assert await credential_store.consume_challenge(
            db_session, challenge.id, challenge.code_hash
        ) is True
        assert await credential_store.consume_challenge(
            db_session, challenge.id, challenge.code_hash
        ) is False

    @pytest.mark.asyncio
    async def test_two_sessions_read_before_either_consumes(
        self, otp_service, session_factory, notifier, profile
    ):
        async with session_factory() as db:
            await otp_service.request_code(db, EMAIL, PURPOSE_SIGNUP, **profile)
        code = notifier.last_code(EMAIL)
        winner = []

        class ReadThenYield(CredentialStore):
            # The rival verifies and commits after this session has read
            # the challenge but before it counts its attempt.
            async def get_challenge(self, db, email, purpose):
                challenge = await super().get_challenge(db, email, purpose)
                if not winner:
                    async with session_factory() as rival_db:
                        winner.append(
                            await otp_service.verify_code(rival_db, EMAIL, PURPOSE_SIGNUP, code)
                        )
                        await rival_db.commit()
                return challenge

        async with session_factory() as db:
            with pytest.raises(AuthChallengeError) as exc:
                await self._service(otp_service, ReadThenYield()).verify_code(
                    db, EMAIL, PURPOSE_SIGNUP, code
                )

        assert len(winner) == 1
        assert isinstance(winner[0], VerifiedLogin)
        assert exc.value.reason == AuthChallengeError.ALREADY_CONSUMED

    @pytest.mark.asyncio
    async def test_consumed_after_attempt_is_counted(
        self, otp_service, db_session, notifier, profile
    ):
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        challenge = await credential_store.get_challenge(db_session, EMAIL, PURPOSE_SIGNUP)
        code_hash = challenge.code_hash

        async def rival_consumes(db, challenge_id):
            assert await credential_store.consume_challenge(db, challenge_id, code_hash) is True

        service = self._service(otp_service, _InterleavingStore(rival_consumes))
        with pytest.raises(AuthChallengeError) as exc:
            await service.verify_code(db_session, EMAIL, PURPOSE_SIGNUP, notifier.last_code(EMAIL))
        assert exc.value.reason == AuthChallengeError.ALREADY_CONSUMED
        assert await credential_store.get_user_by_email(db_session, EMAIL) is None

    @pytest.mark.asyncio
    async def test_reissued_after_attempt_is_counted(
        self, otp_service, db_session, notifier, profile, clock
    ):
        await otp_service.request_code(db_session, EMAIL, PURPOSE_SIGNUP, **profile)
        old_code = notifier.last_code(EMAIL)

        async def rival_reissues(db, challenge_id):
            await credential_store.upsert_challenge(
                db,
                email=EMAIL,
                purpose=PURPOSE_SIGNUP,
                code_hash="c" * 64,
                salt="fresh",
                issued_at=clock(),
                expires_at=clock() + timedelta(minutes=10),
            )

        service = self._service(otp_service, _InterleavingStore(rival_reissues))
        with pytest.raises(AuthChallengeError) as exc:
            await service.verify_code(db_session, EMAIL, PURPOSE_SIGNUP, old_code)
        assert exc.value.reason == AuthChallengeError.ALREADY_CONSUMED

        challenge = await credential_store.get_challenge(db_session, EMAIL, PURPOSE_SIGNUP)
        assert challenge.consumed is False
        assert challenge.code_hash == "c" * 64
