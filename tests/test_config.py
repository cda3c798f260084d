import pytest
from pydantic import ValidationError

from ragprobe.config_schema import AppConfig, load_config
from ragprobe.pipeline.core import Category, RunConfig
from ragprobe.utils.prompt_loader import BUILTIN_PROMPTS, load_prompt, resolve_prompt

TOML = """
[io]
knowledge_dir = "kb"
output_dir = "out"

[llm]
provider = "openai"
model = "gpt-4o-mini"

[prompts]
chunk = ""

[counts]
qa = 2
comprehensive = 3

[runtime]
pacing_ms = 0
"""


def test_toml_config_is_loaded(tmp_path):
    path = tmp_path / "run.toml"
    path.write_text(TOML, encoding="utf-8")
    app = load_config(str(path))
    assert app.io.knowledge_dir == "kb"
    assert app.llm.model == "gpt-4o-mini"
    assert app.counts.qa == 2
    assert app.counts.document == 1
    assert app.generation.max_output_tokens == 8192


def test_yaml_and_json_configs_are_loaded(tmp_path):
    y = tmp_path / "run.yaml"
    y.write_text("counts:\n  chunk: 4\nruntime:\n  source_mode: fixed_list\n", encoding="utf-8")
    j = tmp_path / "run.json"
    j.write_text('{"generation": {"temperature": 0.2}}', encoding="utf-8")
    assert load_config(str(y)).counts.chunk == 4
    assert load_config(str(y)).runtime.source_mode == "fixed_list"
    assert load_config(str(j)).generation.temperature == 0.2


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.toml"))


def test_negative_counts_are_rejected():
    with pytest.raises(ValidationError):
        AppConfig.model_validate({"counts": {"qa": -1}})


def test_run_config_resolves_prompts_and_counts(tmp_path, monkeypatch):
    monkeypatch.setenv("RAGPROBE_MAX_RETRIES", "4")
    monkeypatch.setenv("RAGPROBE_PACING_MS", "900")
    path = tmp_path / "run.toml"
    path.write_text(TOML, encoding="utf-8")

    cfg = RunConfig.from_app(load_config(str(path)))

    assert cfg.prompt_for(Category.CHUNK) == ""
    assert cfg.prompt_for(Category.QA) == load_prompt("qa")
    assert cfg.count_for(Category.QA) == 2
    assert cfg.count_for(Category.COMPREHENSIVE) == 3
    assert cfg.count_for(Category.TEST) == 1
    assert cfg.retries == 4
    # explicit config wins over the environment
    assert cfg.pacing_ms == 0
    assert cfg.results_root.as_posix() == "out/result"
    assert not cfg.is_fixed_list


def test_execution_defaults(monkeypatch):
    for name in ("RAGPROBE_MAX_RETRIES", "RAGPROBE_RETRY_DELAY_MS", "RAGPROBE_TIMEOUT_MS", "RAGPROBE_PACING_MS"):
        monkeypatch.delenv(name, raising=False)
    cfg = RunConfig.from_app(AppConfig())
    assert (cfg.retries, cfg.retry_delay_ms, cfg.timeout_ms, cfg.pacing_ms) == (2, 2000, 90000, 1500)


def test_every_builtin_prompt_is_packaged():
    for key in BUILTIN_PROMPTS:
        assert load_prompt(key).strip()


def test_prompt_file_override(tmp_path):
    custom = tmp_path / "qa.txt"
    custom.write_text("custom qa prompt", encoding="utf-8")
    files = {"qa": str(custom), "chunk": str(tmp_path / "missing.txt")}
    assert resolve_prompt("qa", None, files) == "custom qa prompt"
    assert resolve_prompt("qa", "inline", files) == "inline"
    assert resolve_prompt("chunk", None, files) == load_prompt("chunk")
