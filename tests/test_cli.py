from click.testing import CliRunner

from agent_worker.cli import cli


def test_help_lists_commands():
    result = CliRunner().invoke(cli, ["--help"])

    assert result.exit_code == 0
    for command in ("init-db", "serve", "worker", "enqueue", "status"):
        assert command in result.output


def test_worker_requires_a_known_queue():
    result = CliRunner().invoke(cli, ["worker", "--queue", "payments"])

    assert result.exit_code == 2
    assert "payments" in result.output


def test_enqueue_rejects_invalid_json():
    result = CliRunner().invoke(cli, ["enqueue", "fraud-check", "--queue", "marketplace-agents", "--payload", "{oops"])

    assert result.exit_code == 1
    assert "not valid JSON" in result.output


def test_enqueue_rejects_non_object_payload():
    result = CliRunner().invoke(cli, ["enqueue", "fraud-check", "--queue", "marketplace-agents", "--payload", "[1, 2]"])

    assert result.exit_code == 1
    assert "must be a JSON object" in result.output


def test_enqueue_rejects_unknown_priority():
    result = CliRunner().invoke(
        cli, ["enqueue", "fraud-check", "--queue", "marketplace-agents", "--priority", "urgent"]
    )

    assert result.exit_code == 2


def test_enqueue_rejects_unknown_task_type():
    result = CliRunner().invoke(cli, ["enqueue", "fraud-chek", "--queue", "marketplace-agents"])

    assert result.exit_code == 2
    assert "fraud-chek" in result.output


def test_enqueue_rejects_task_type_from_other_queue():
    result = CliRunner().invoke(cli, ["enqueue", "review-document", "--queue", "marketplace-agents"])

    assert result.exit_code == 2
    assert "does not run on the marketplace-agents queue" in result.output
