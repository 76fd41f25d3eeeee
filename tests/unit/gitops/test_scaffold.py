"""
Unit tests for environment and GitOps directory scaffolds.
"""

import pytest
import yaml
from pydantic import ValidationError

from gitops.scaffold import application_set, environment_scaffold, generate_gitops_structure
from models.git_models import GitOpsStructureOptions


class TestEnvironmentScaffold:

    def test_files_for_environment(self):
        files = environment_scaffold('dev')

        assert sorted(files) == [
            'environments/dev/appsets/appset-placeholder.yaml',
            'environments/dev/customers/customer-placeholder.yaml',
            'environments/dev/values.yaml',
        ]
        assert yaml.safe_load(files['environments/dev/values.yaml'])['environment'] == 'dev'

    @pytest.mark.parametrize("environment", ['', 'bad..one', 'has space', '-dash'])
    def test_invalid_environment(self, environment):
        with pytest.raises(ValueError):
            environment_scaffold(environment)


class TestGenerateGitopsStructure:

    def test_creates_instance_dirs_and_application_set(self, tmp_path):
        result = generate_gitops_structure(
            tmp_path, GitOpsStructureOptions(product='billing', environments=['dev', 'prod'])
        )

        assert result.success is True
        assert (tmp_path / 'gitops/billing/dev/customers/instances/.gitkeep').exists()
        assert (tmp_path / 'gitops/billing/prod/customers/instances/.gitkeep').exists()
        appset = yaml.safe_load((tmp_path / 'gitops/billing/applicationset.yaml').read_text())
        assert appset['kind'] == 'ApplicationSet'
        assert appset['spec']['generators'][0]['list']['elements'] == [
            {'environment': 'dev'}, {'environment': 'prod'}
        ]
        assert 'gitops/billing/applicationset.yaml' in result.data['paths']

    def test_application_set_optional(self, tmp_path):
        result = generate_gitops_structure(
            tmp_path,
            GitOpsStructureOptions(product='billing', environments=['dev'], generate_application_set=False),
        )

        assert result.success is True
        assert not (tmp_path / 'gitops/billing/applicationset.yaml').exists()

    def test_nested_environment_rejected(self, tmp_path):
        result = generate_gitops_structure(
            tmp_path, GitOpsStructureOptions(product='billing', environments=['team/dev'])
        )

        assert result.success is False
        assert "cannot contain '/'" in result.error

    def test_invalid_product_rejected(self):
        with pytest.raises(ValidationError):
            GitOpsStructureOptions(product='../escape', environments=['dev'])


def test_application_set_templates_environment():
    appset = application_set('billing', ['dev'])

    template = appset['spec']['template']
    assert template['metadata']['name'] == 'billing-{{environment}}'
    assert template['spec']['source']['targetRevision'] == '{{environment}}'
