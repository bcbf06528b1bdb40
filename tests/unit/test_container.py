"""
Unit tests for configuration loading.
"""

import os
import subprocess
import sys
from pathlib import Path

import pytest

from container import worker_tokens

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def test_worker_tokens_keep_index_order_and_skip_blanks():
    config = {"discord_token_1": "a", "discord_token_2": "", "discord_token_3": "c"}
    assert worker_tokens(config) == ["a", "c"]


def test_worker_tokens_require_at_least_one():
    with pytest.raises(ValueError):
        worker_tokens({"discord_token_1": "", "discord_token_2": "", "discord_token_3": ""})


def test_container_loads_without_discord_token():
    env = {k: v for k, v in os.environ.items() if not k.startswith("DISCORD_TOKEN_")}

    result = subprocess.run(
        [sys.executable, "-c", "from container import container; container.mixer()"],
        cwd=PROJECT_ROOT,
        env=env,
        capture_output=True,
        text=True,
    )

    assert result.returncode == 0, result.stderr
