"""
Unit tests for the docker SDK backed Engine collaborator.
"""

from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, NotFound

from updates.engine import DockerSDKEngine, EngineError


def api_error(cls, status):
    return cls("engine error", response=MagicMock(status_code=status, url="http://docker/x", reason="err"))


@pytest.fixture
def client():
    return MagicMock()


class TestDockerSDKEngine:

    @pytest.mark.asyncio
    async def test_list_images_filters_by_reference(self, client):
        client.images.list.return_value = [MagicMock(attrs={"Id": "sha256:1"}), MagicMock(attrs={"Id": "sha256:2"})]

        images = await DockerSDKEngine(client).list_images("nginx:latest")

        client.images.list.assert_called_once_with(filters={"reference": "nginx:latest"})
        assert [i["Id"] for i in images] == ["sha256:1", "sha256:2"]

    @pytest.mark.asyncio
    async def test_inspect_image(self, client):
        client.images.get.return_value = MagicMock(attrs={"RepoDigests": ["nginx@sha256:a"]})

        attrs = await DockerSDKEngine(client).inspect_image("sha256:1")

        assert attrs["RepoDigests"] == ["nginx@sha256:a"]

    @pytest.mark.asyncio
    async def test_inspect_missing_image_raises_with_status(self, client):
        client.images.get.side_effect = api_error(NotFound, 404)

        with pytest.raises(EngineError) as exc_info:
            await DockerSDKEngine(client).inspect_image("sha256:gone")

        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_distribution_descriptor_digest(self, client):
        client.images.get_registry_data.return_value = MagicMock(
            attrs={"Descriptor": {"digest": "sha256:remote"}}, id="sha256:fallback",
        )

        assert await DockerSDKEngine(client).get_image_distribution("nginx:latest") == "sha256:remote"

    @pytest.mark.asyncio
    async def test_distribution_falls_back_to_id(self, client):
        client.images.get_registry_data.return_value = MagicMock(attrs={}, id="sha256:fallback")

        assert await DockerSDKEngine(client).get_image_distribution("nginx:latest") == "sha256:fallback"

    @pytest.mark.asyncio
    async def test_distribution_rate_limit(self, client):
        client.images.get_registry_data.side_effect = api_error(APIError, 429)

        with pytest.raises(EngineError) as exc_info:
            await DockerSDKEngine(client).get_image_distribution("nginx:latest")

        assert exc_info.value.status_code == 429
