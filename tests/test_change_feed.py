#!/usr/bin/env python3
"""
Tests for change payload parsing, feed filtering and configuration.
"""

import asyncio
import json
import os
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from ranksync.config import Config, SyncSettings
from ranksync.data_models.events import ChangeEvent, FieldChange
from ranksync.services.change_feed import RedisChangeFeed, has_positive_points, parse_change_payload
from ranksync.utils.logger import log_file_path, setup_logger
from ranksync.utils.sync_exceptions import FeedUnavailable, FetchFailure, RankSyncException


def test_parse_payload_diffs_rows():
    raw = json.dumps({
        'telegram_id': 1001,
        'old': {'telegram_id': 1001, 'username': 'Lightning', 'points': 850, 'total_gifts': 12},
        'new': {'telegram_id': 1001, 'username': 'Lightning', 'points': 900, 'total_gifts': 13},
        'timestamp': 1700000000.5,
    }).encode('utf-8')
    event = parse_change_payload(raw)
    assert event.identity == '1001'
    assert set(event.changes) == {'points', 'total_gifts'}
    assert event.changes['points'] == FieldChange(850, 900)
    assert event.new_points == 900
    assert event.new_gifts == 13
    assert event.touches_score
    assert event.timestamp == 1700000000.5


def test_parse_payload_takes_identity_from_new_row():
    event = parse_change_payload('{"new": {"telegram_id": "77", "points": 5}}')
    assert event.identity == '77'
    # Inserted row: every column counts as changed
    assert event.changes['points'] == FieldChange(None, 5)


def test_parse_payload_rejects_garbage():
    assert parse_change_payload(b'not json') is None
    assert parse_change_payload('[1, 2, 3]') is None
    assert parse_change_payload('{"old": {}, "new": {"points": 1}}') is None
    assert parse_change_payload('{"identity": "x", "new": "oops"}') is None


def test_label_only_change_does_not_touch_score():
    event = ChangeEvent.from_rows('9', {'username': 'a', 'points': 3}, {'username': 'b', 'points': 3})
    assert set(event.changes) == {'username'}
    assert not event.touches_score
    assert event.new_points is None


def test_default_predicate_keeps_positive_points():
    assert has_positive_points(ChangeEvent('a', {'points': FieldChange(5, 10)}))
    assert not has_positive_points(ChangeEvent('a', {'points': FieldChange(5, 0)}))
    assert has_positive_points(ChangeEvent('a', {'total_gifts': FieldChange(1, 2)}))


def test_redis_feed_requires_connect_before_subscribe():
    async def scenario():
        feed = RedisChangeFeed(channel='ranksync:test')
        assert not feed.is_connected
        stream = feed.subscribe()
        try:
            await stream.__anext__()
        except FeedUnavailable:
            return
        raise AssertionError("subscribe() worked without a connection")

    asyncio.run(scenario())


def test_sync_settings_defaults_and_bounds():
    settings = SyncSettings()
    assert settings.window_size == 10
    assert settings.identity_debounce_ms == 1000
    assert settings.global_debounce_ms == 2000
    assert settings.fetch_timeout == 10.0
    assert settings.fallback_interval == 30.0

    for bad in (dict(window_size=0), dict(window_size=51), dict(fetch_timeout_ms=0), dict(global_debounce_ms=-1)):
        try:
            SyncSettings(**bad)
        except ValueError:
            continue
        raise AssertionError(f"accepted invalid settings {bad}")


def test_config_builds_sync_settings():
    Config.validate()
    settings = Config.sync_settings()
    assert settings.window_size == Config.LEADERBOARD_WINDOW_SIZE
    assert settings.fallback_interval_ms == Config.FALLBACK_REFRESH_MS


def test_setup_logger_follows_log_settings():
    saved = (Config.LOG_DIR, Config.LOG_FILE_PREFIX)
    with tempfile.TemporaryDirectory() as directory:
        try:
            Config.LOG_DIR = os.path.join(directory, 'nested')
            Config.LOG_FILE_PREFIX = 'feedtest'
            path = log_file_path()
            assert path.parent == Path(directory) / 'nested'
            assert path.name.startswith('feedtest_')

            logger = setup_logger('ranksync.tests.file_logging')
            logger.info("window refreshed")
            for handler in logger.handlers:
                handler.flush()
            assert 'window refreshed' in path.read_text(encoding='utf-8')
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)

            Config.LOG_DIR = ''
            assert log_file_path() is None
            console_only = setup_logger('ranksync.tests.console_logging')
            assert len(console_only.handlers) == 1
        finally:
            Config.LOG_DIR, Config.LOG_FILE_PREFIX = saved


def test_exceptions_carry_user_messages():
    failure = FetchFailure("refresh", "timed out")
    assert isinstance(failure, RankSyncException)
    assert "timed out" in str(failure)
    assert failure.user_message != str(failure)
    assert FeedUnavailable("offline").reason == "offline"


if __name__ == "__main__":
    tests = [(name, fn) for name, fn in sorted(globals().items()) if name.startswith('test_') and callable(fn)]
    failed = 0
    for name, fn in tests:
        try:
            fn()
            print(f"✅ PASS - {name}")
        except Exception as e:
            failed += 1
            print(f"❌ FAIL - {name}: {e}")
    sys.exit(1 if failed else 0)
