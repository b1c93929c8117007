import pytest

from kinformer._cogs.structs.references import NAMESPACES, PODS, Resource


@pytest.fixture(params=[
    pytest.param((PODS, 'ns'), id='namespaced-in-namespace'),
    pytest.param((PODS, None), id='namespaced-cluster-wide'),
    pytest.param((NAMESPACES, None), id='cluster-scoped'),
])
def _resource_and_namespace(request) -> tuple[Resource, str | None]:
    return request.param


@pytest.fixture()
def resource(_resource_and_namespace):
    return _resource_and_namespace[0]


@pytest.fixture()
def namespace(_resource_and_namespace):
    return _resource_and_namespace[1]
