"""Unit tests for BaseDeployer interface."""

from __future__ import annotations

import inspect
from unittest.mock import patch

import pytest

from hangar.config.settings import Settings
from hangar.deploy.deployers import create_deployer
from hangar.deploy.deployers.aws_apprunner import AppRunnerDeployer
from hangar.deploy.deployers.base import BaseDeployer


@pytest.mark.unit
class TestBaseDeployerInterface:
    """Tests for BaseDeployer abstract interface."""

    def test_base_deployer_is_abstract(self) -> None:
        """Test BaseDeployer cannot be instantiated directly."""
        with pytest.raises(TypeError):
            BaseDeployer()  # type: ignore[abstract]

    def test_base_deployer_abstract_methods(self) -> None:
        """Test BaseDeployer declares required abstract methods."""
        expected = {"resolve", "describe", "create_or_update", "get_status", "destroy"}
        assert expected == set(BaseDeployer.__abstractmethods__)

    def test_create_or_update_is_keyword_only(self) -> None:
        """Test create_or_update takes keyword-only arguments."""
        params = inspect.signature(BaseDeployer.create_or_update).parameters
        for name in ("service_name", "image_uri", "access_role_arn"):
            assert params[name].kind == inspect.Parameter.KEYWORD_ONLY

    def test_missing_method_validation(self) -> None:
        """Test abstract methods are required for subclasses."""

        class IncompleteDeployer(BaseDeployer):
            def resolve(self, service_name: str) -> None:  # type: ignore[override]
                return None

        with pytest.raises(TypeError):
            IncompleteDeployer()  # type: ignore[abstract]

    def test_factory_returns_apprunner(self, settings: Settings) -> None:
        """Test the factory builds the App Runner deployer."""
        with patch("boto3.session.Session") as mock_session:
            deployer = create_deployer(settings)

        mock_session.return_value.client.assert_called_once_with("apprunner")
        assert isinstance(deployer, AppRunnerDeployer)
