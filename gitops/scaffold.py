"""
Directory scaffolds written into GitOps repositories.

environment_scaffold() describes the files committed on each environment
branch by the bootstrapper; generate_gitops_structure() lays out the
per-product tree consumed by Argo CD.
"""
import logging
from pathlib import Path
from typing import Dict

import yaml

from models.git_models import GitOpsStructureOptions, OperationResult, validate_branch_name

logger = logging.getLogger(__name__)


def _dump(data) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def environment_scaffold(environment: str) -> Dict[str, str]:
    """
    Relative path -> content for one environment branch.

    Raises:
        ValueError: If the environment is not usable as a branch/directory name
    """
    validate_branch_name(environment)
    root = f"environments/{environment}"
    return {
        f"{root}/customers/customer-placeholder.yaml": _dump({
            'customer': 'placeholder',
            'environment': environment,
            'enabled': False,
        }),
        f"{root}/appsets/appset-placeholder.yaml": _dump({
            'name': f"appset-placeholder-{environment}",
            'environment': environment,
            'applications': [],
        }),
        f"{root}/values.yaml": _dump({
            'environment': environment,
            'global': {},
        }),
    }


def application_set(product: str, environments) -> dict:
    """Argo CD ApplicationSet generating one Application per environment"""
    return {
        'apiVersion': 'argoproj.io/v1alpha1',
        'kind': 'ApplicationSet',
        'metadata': {'name': product},
        'spec': {
            'generators': [{
                'list': {'elements': [{'environment': env} for env in environments]}
            }],
            'template': {
                'metadata': {'name': f"{product}-{{{{environment}}}}"},
                'spec': {
                    'project': 'default',
                    'source': {
                        'path': f"gitops/{product}/{{{{environment}}}}",
                        'targetRevision': '{{environment}}',
                    },
                    'destination': {
                        'server': 'https://kubernetes.default.svc',
                        'namespace': f"{product}-{{{{environment}}}}",
                    },
                    'syncPolicy': {'automated': {'prune': True, 'selfHeal': True}},
                },
            },
        },
    }


def generate_gitops_structure(repo_path, options: GitOpsStructureOptions) -> OperationResult:
    """
    Write gitops/<product>/<env>/customers/instances/ for every environment
    and, when requested, gitops/<product>/applicationset.yaml.
    """
    product_dir = Path(repo_path) / 'gitops' / options.product
    created = []
    try:
        for environment in options.environments:
            validate_branch_name(environment)
            if '/' in environment:
                raise ValueError(f"Environment name cannot contain '/': {environment}")
            instances_dir = product_dir / environment / 'customers' / 'instances'
            instances_dir.mkdir(parents=True, exist_ok=True)
            (instances_dir / '.gitkeep').touch()
            created.append(str(instances_dir.relative_to(repo_path)))

        if options.generate_application_set:
            product_dir.mkdir(parents=True, exist_ok=True)
            appset_path = product_dir / 'applicationset.yaml'
            appset_path.write_text(_dump(application_set(options.product, options.environments)), encoding='utf-8')
            created.append(str(appset_path.relative_to(repo_path)))
    except (ValueError, OSError) as e:
        logger.error(f"Failed to generate GitOps structure for {options.product}: {e}")
        return OperationResult.fail(str(e))

    logger.info(f"Generated GitOps structure for {options.product} in {repo_path}")
    return OperationResult.ok(
        f"GitOps structure generated for {options.product}",
        data={'paths': created}
    )
