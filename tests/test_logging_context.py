import logging

from booking_engine.logging_context import (
    NO_ATTEMPT,
    attempt_scope,
    get_attempt_id,
    get_attempt_logger,
)


class TestAttemptScope:
    def test_scope_sets_and_restores(self):
        assert get_attempt_id() == NO_ATTEMPT
        with attempt_scope("ATT-1"):
            assert get_attempt_id() == "ATT-1"
        assert get_attempt_id() == NO_ATTEMPT

    def test_nested_scopes(self):
        with attempt_scope("ATT-outer"):
            with attempt_scope("ATT-inner"):
                assert get_attempt_id() == "ATT-inner"
            assert get_attempt_id() == "ATT-outer"

    def test_restored_after_error(self):
        try:
            with attempt_scope("ATT-2"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        assert get_attempt_id() == NO_ATTEMPT


class TestAttemptLogger:
    def test_records_carry_attempt_id(self, caplog):
        logger = get_attempt_logger("booking_engine.tests.attempt")
        with caplog.at_level(logging.INFO, logger="booking_engine.tests.attempt"):
            with attempt_scope("ATT-LOG"):
                logger.info("holding slot")
            logger.info("idle")
        assert [r.attempt_id for r in caplog.records] == ["ATT-LOG", NO_ATTEMPT]

    def test_filter_attached_once(self):
        logger = get_attempt_logger("booking_engine.tests.once")
        get_attempt_logger("booking_engine.tests.once")
        assert len(logger.filters) == 1
