import pytest

from app_maker.models import DevStatus, dev_progress, stage_progress
from app_maker.pipeline import STAGE_DESCRIPTIONS, STAGE_TABLE, Pipeline

EXPECTED_ORDER = [
    "setup_agents",
    "check_requirement",
    "generate_prd",
    "define_ux_standard",
    "design_architecture",
    "plan_epic_and_story",
    "define_data_model",
    "define_api",
    "generate_pages",
    "develop_story",
    "fix_bug",
    "run_test",
    "deploy",
]


class TestPipeline:
    def test_default_pipeline_order(self):
        assert Pipeline.default().names() == EXPECTED_ORDER

    def test_need_confirm_flags(self):
        pipeline = Pipeline.default()
        confirmed = {item.name.value for item in pipeline.items if item.need_confirm}
        assert confirmed == {
            "check_requirement",
            "generate_prd",
            "define_ux_standard",
            "design_architecture",
            "plan_epic_and_story",
            "define_data_model",
            "define_api",
            "generate_pages",
            "develop_story",
        }

    def test_every_stage_has_both_hooks(self):
        for item in Pipeline.default().items:
            assert callable(item.req_handler), item.name
            assert callable(item.resp_handler), item.name

    def test_next_walks_the_table(self):
        pipeline = Pipeline.default()
        assert pipeline.first().name == DevStatus.SETUP_AGENTS
        assert pipeline.next("generate_prd").name == DevStatus.DEFINE_UX_STANDARD
        assert pipeline.next("deploy") is None

    def test_unknown_stage(self):
        pipeline = Pipeline.default()
        assert pipeline.get("write_poetry") is None
        assert pipeline.next("write_poetry") is None
        assert "write_poetry" not in pipeline
        assert "deploy" in pipeline

    def test_skip_in_dev_mode_from_settings(self):
        pipeline = Pipeline.default(["fix_bug", "run_test"])
        skipped = [item.name.value for item in pipeline.items if item.skip_in_dev_mode]
        assert skipped == ["fix_bug", "run_test"]

    def test_descriptions_cover_setup_environment(self):
        assert STAGE_DESCRIPTIONS["setup_environment"]
        assert len(STAGE_DESCRIPTIONS) == len(STAGE_TABLE) + 1


class TestProgress:
    def test_dev_progress_is_monotone_along_the_pipeline(self):
        order = ["initializing", "setup_environment", *EXPECTED_ORDER, "done"]
        values = [dev_progress(name) for name in order]
        assert values == sorted(values)
        assert values[-1] == 100

    def test_failed_resets_progress(self):
        assert dev_progress(DevStatus.FAILED) == 0

    @pytest.mark.parametrize(
        ("status", "expected"),
        [("pending", 0), ("in_progress", 50), ("paused", 50), ("done", 100), ("failed", 0)],
    )
    def test_stage_progress(self, status, expected):
        assert stage_progress(status) == expected

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            dev_progress("write_poetry")
