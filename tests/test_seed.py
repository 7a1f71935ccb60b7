"""Tests for the seed command line: argument checks and the refresh flow."""

import argparse
from unittest.mock import MagicMock, patch

import pytest

import seed
from charity_register.db.repository import Score
from charity_register.errors import NotFoundError

from conftest import FakeRegistryClient, make_organization


def _args(*argv):
    return seed.build_parser().parse_args(list(argv))


# ─── Argument checks ─────────────────────────────────────────────────────────


class TestValidateArgs:
    def test_defaults_are_valid(self):
        assert seed.validate_args(_args()) is None

    @pytest.mark.parametrize(
        "argv, flag",
        [
            (["--concurrency", "0"], "--concurrency"),
            (["--rate-limit", "0"], "--rate-limit"),
            (["--rate-limit", "-5"], "--rate-limit"),
            (["--max-retries", "-1"], "--max-retries"),
            (["--batch-size", "0"], "--batch-size"),
            (["--checkpoint-interval", "0"], "--checkpoint-interval"),
            (["--progress-interval", "0"], "--progress-interval"),
        ],
    )
    def test_non_positive_values_rejected(self, argv, flag):
        """Zero workers or zero rate → message naming the flag, not a crash later on."""
        problem = seed.validate_args(_args("--mode", "api", *argv))
        assert problem is not None
        assert flag in problem

    def test_zero_retries_allowed(self):
        assert seed.validate_args(_args("--max-retries", "0")) is None

    def test_inverted_range(self):
        assert "--end" in seed.validate_args(_args("--mode", "api", "--start", "10", "--end", "5"))

    def test_refresh_needs_number(self):
        assert "--number" in seed.validate_args(_args("--mode", "api", "--refresh"))

    def test_refresh_only_in_api_mode(self):
        assert "--mode api" in seed.validate_args(_args("--mode", "score", "--refresh", "--number", "5"))

    def test_refresh_with_number(self):
        assert seed.validate_args(_args("--mode", "api", "--refresh", "--number", "1089464")) is None

    def test_main_exits_1_on_bad_arguments(self):
        logger = MagicMock()
        with patch.object(seed, "PipelineLogger", return_value=logger), patch.object(
            seed, "check_connection"
        ) as check, patch("sys.argv", ["seed.py", "--mode", "api", "--concurrency", "0"]):
            with pytest.raises(SystemExit) as exc:
                seed.main()

        assert exc.value.code == 1
        logger.error.assert_called_once()
        check.assert_not_called()


# ─── Refresh ─────────────────────────────────────────────────────────────────


def _refresh_args(number=42):
    return argparse.Namespace(number=number, verbose=False, api_keys="k", rate_limit=10, max_retries=1)


def _score(number, overall):
    return Score(
        registered_number=number,
        efficiency_score=overall,
        financial_health_score=overall,
        transparency_score=overall,
        governance_score=overall,
        overall_score=overall,
        confidence_level="Medium",
    )


class TestRefreshMode:
    def test_refreshes_then_rescores(self):
        crawler = MagicMock()
        crawler.refresh.return_value = make_organization(42, status="Removed")
        engine = MagicMock()
        engine.get_cached.return_value = _score(42, 40.0)
        engine.calculate.return_value = _score(42, 55.0)

        with patch.object(seed, "build_client", return_value=FakeRegistryClient()), patch.object(
            seed, "Crawler", return_value=crawler
        ):
            status = seed.run_refresh_mode(_refresh_args(), engine, MagicMock(), MagicMock())

        assert status == 0
        crawler.refresh.assert_called_once()
        assert crawler.refresh.call_args.args[0] == 42
        engine.calculate.assert_called_once_with(42)

    def test_unknown_number_exits_1_without_scoring(self):
        crawler = MagicMock()
        crawler.refresh.side_effect = NotFoundError()
        engine = MagicMock()
        logger = MagicMock()

        with patch.object(seed, "build_client", return_value=FakeRegistryClient()), patch.object(
            seed, "Crawler", return_value=crawler
        ):
            status = seed.run_refresh_mode(_refresh_args(), engine, MagicMock(), logger)

        assert status == 1
        logger.error.assert_called_once()
        engine.calculate.assert_not_called()

    def test_missing_api_key_exits_1(self):
        with patch.object(seed, "build_client", return_value=None), patch.object(seed, "Crawler") as crawler:
            assert seed.run_refresh_mode(_refresh_args(), MagicMock(), MagicMock(), MagicMock()) == 1
        crawler.assert_not_called()
