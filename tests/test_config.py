import json
import tempfile
import unittest
from pathlib import Path

from acopilot.core.config import AppConfig, load_app_config
from acopilot.core.models import SupervisionLevel
from acopilot.core.provenance import ProvenanceEvent, ProvenanceLogger

REPO_ROOT = Path(__file__).resolve().parents[1]


class ConfigParsingTests(unittest.TestCase):
    def _write_yaml(self, data: str) -> Path:
        tmp = tempfile.NamedTemporaryFile("w", delete=False, suffix=".yaml")
        tmp.write(data)
        tmp.flush()
        tmp.close()
        self.addCleanup(lambda: Path(tmp.name).unlink(missing_ok=True))
        return Path(tmp.name)

    def test_load_app_config_defaults(self) -> None:
        path = self._write_yaml(
            """
            store:
              sqlite_path: data/students.sqlite
            """
        )
        config = load_app_config(path)

        self.assertIsInstance(config, AppConfig)
        self.assertTrue(config.store.sqlite_path.is_absolute())
        self.assertEqual(config.store.sqlite_path, (path.parent / "data/students.sqlite").resolve())
        self.assertEqual(config.models.suggester.model, "gpt-4o-mini")
        self.assertEqual(config.generator.batch_size, 5)
        self.assertEqual(config.fallback.default_supervision, SupervisionLevel.MINIMAL)

    def test_legacy_model_fields_are_promoted(self) -> None:
        path = self._write_yaml(
            """
            models:
              provider: openai
              model: gpt-4o
              temperature: 0.3
              max_tokens: 4096
            store:
              sqlite_path: students.sqlite
            """
        )
        config = load_app_config(path)
        self.assertEqual(config.models.suggester.model, "gpt-4o")
        self.assertEqual(config.models.default_temperature, 0.3)
        self.assertEqual(config.models.default_max_tokens, 4096)

    def test_supervision_aliases_parse(self) -> None:
        path = self._write_yaml(
            """
            fallback:
              default_supervision: independent
            store:
              sqlite_path: students.sqlite
            """
        )
        self.assertEqual(load_app_config(path).fallback.default_supervision, SupervisionLevel.NONE)

    def test_missing_store_section_rejected(self) -> None:
        path = self._write_yaml(
            """
            generator:
              batch_size: 3
            """
        )
        with self.assertRaises(ValueError):
            load_app_config(path)

    def test_out_of_range_batch_size_rejected(self) -> None:
        path = self._write_yaml(
            """
            generator:
              batch_size: 50
            store:
              sqlite_path: students.sqlite
            """
        )
        with self.assertRaises(ValueError):
            load_app_config(path)

    def test_sample_config_loads(self) -> None:
        config = load_app_config(REPO_ROOT / "config" / "activity.yaml", base_dir=REPO_ROOT)
        self.assertEqual(config.store.sqlite_path, (REPO_ROOT / "outputs" / "students.sqlite").resolve())
        self.assertEqual(config.models.suggester.api_key_env, "OPENAI_API_KEY_SUGGESTER")


class ProvenanceLoggerTests(unittest.TestCase):
    def test_appends_jsonl_events(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            log_path = Path(tmpdir) / "logs" / "provenance.jsonl"
            logger = ProvenanceLogger(log_path)

            logger.log({"stage": "suggest", "message": "Round 1", "agent": "llm", "student_id": "s1"})
            logger.extend([ProvenanceEvent(stage="save", message="Saved 'Dino Dig'")])

            lines = log_path.read_text(encoding="utf-8").splitlines()
            self.assertEqual(len(lines), 2)
            self.assertEqual(json.loads(lines[0])["agent"], "llm")
            self.assertEqual([event.stage for event in logger.read()], ["suggest", "save"])


if __name__ == "__main__":
    unittest.main()
