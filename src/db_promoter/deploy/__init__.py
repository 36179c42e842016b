"""Deployers, deployment models and the deployment service.

Usage:
    from db_promoter.deploy import DeploymentOptions, deploy_package
"""

from db_promoter.deploy.document import DocumentDeployer
from db_promoter.deploy.keymap import KeyMap
from db_promoter.deploy.models import DeploymentOptions, DeploymentRecord, KeyMappingEntry
from db_promoter.deploy.ordering import build_dependency_graph, topological_sort
from db_promoter.deploy.relational import RelationalDeployer
from db_promoter.deploy.service import (
    PACKAGE_DEPLOYMENT,
    PACKAGE_GENERATION,
    HandlerContext,
    HandlerRegistry,
    default_handlers,
    deploy_package,
)

__all__ = [
    "DeploymentOptions",
    "DeploymentRecord",
    "KeyMappingEntry",
    "KeyMap",
    "build_dependency_graph",
    "topological_sort",
    "RelationalDeployer",
    "DocumentDeployer",
    "deploy_package",
    "HandlerContext",
    "HandlerRegistry",
    "default_handlers",
    "PACKAGE_DEPLOYMENT",
    "PACKAGE_GENERATION",
]
