# tests/test_hierarchy_check.py
"""
Tests for the startup hierarchy integrity check.
"""

import logging

import pytest
from django.apps import apps

from organization.models import Tenant


pytestmark = pytest.mark.django_db


@pytest.fixture
def config():
    return apps.get_app_config("organization")


def test_healthy_tree_passes(config, tree, caplog):
    with caplog.at_level(logging.INFO, logger="organization.apps"):
        config._check_hierarchy("error")

    assert "Hierarchy check passed" in caplog.text


def test_error_mode_refuses_corrupted_tree(config, tree):
    Tenant.objects.filter(pk=tree["root"].pk).delete()

    with pytest.raises(RuntimeError, match="HIERARCHY CHECK FAILED"):
        config._check_hierarchy("error")


def test_warn_mode_logs(config, tree, caplog):
    Tenant.objects.filter(pk=tree["sales"].pk).update(parent_id=tree["sales_east"].pk)

    with caplog.at_level(logging.WARNING, logger="organization.apps"):
        config._check_hierarchy("warn")

    assert "[cycle]" in caplog.text


def test_skip_mode_does_nothing(config, settings, tree):
    settings.ORGANIZATION_HIERARCHY_CHECK = "skip"
    Tenant.objects.filter(pk=tree["root"].pk).delete()

    config.ready()
