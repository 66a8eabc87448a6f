"""Unit tests for the constants module.

Pins the values other tools and remote jobs depend on.
"""

from shipyard.constants import (
    BUILDS_DIR,
    DEFAULT_DMG_WORKFLOW,
    DEFAULT_WORKFLOW_REF,
    GITHUB_ACCEPT,
    MAX_WORKFLOW_INPUTS,
    RELEASES_DIR,
    WORKFLOWS_BUNDLE,
    WORKFLOWS_DIR,
)


class TestConstants:
    """Tests for centralized application constants."""

    def test_output_layout(self) -> None:
        """Build and release folders match the project layout users expect."""
        assert BUILDS_DIR == "Builds"
        assert RELEASES_DIR == "Releases"

    def test_workflow_inputs_limit(self) -> None:
        """The job-trigger API accepts at most five inputs."""
        assert MAX_WORKFLOW_INPUTS == 5
        assert isinstance(MAX_WORKFLOW_INPUTS, int)

    def test_disk_image_workflow_defaults(self) -> None:
        assert DEFAULT_DMG_WORKFLOW == "create-dmg.yml"
        assert DEFAULT_WORKFLOW_REF == "main"

    def test_workflow_bundle_paths(self) -> None:
        assert WORKFLOWS_DIR == ".github/workflows"
        assert WORKFLOWS_BUNDLE.endswith(".zip")

    def test_github_accept_header(self) -> None:
        assert GITHUB_ACCEPT == "application/vnd.github+json"
