import asyncio
import os
import sys
from typing import Any, AsyncIterator, Dict, List, Optional

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "src")))

from spo_manager.core.aggregation import walk_folders
from spo_manager.core.models import (
    FolderListing,
    ListInfo,
    NavigationConfig,
    RoleAssignment,
    SecurableObject,
    SiteInfo,
)
from spo_manager.database.repository import DatabaseRepository, ResultStore
from spo_manager.utils.config_parser import AuthConfig
from spo_manager.utils.exceptions import RemoteErrorKind, RemoteSiteError


class FakeRemoteClient:
    """In-memory stand-in for SharePointAPIClient.

    Sites listed in ``failures`` raise the given RemoteSiteError from every
    call. ``calls`` records (operation, site_url) in call order.
    """

    def __init__(self) -> None:
        self.titles: Dict[str, str] = {}
        self.lists: Dict[str, List[ListInfo]] = {}
        self.folders: Dict[str, FolderListing] = {}
        self.failing_folders: Dict[str, RemoteSiteError] = {}
        self.webs: Dict[str, SecurableObject] = {}
        self.list_securables: Dict[str, List[SecurableObject]] = {}
        self.assignments: Dict[str, List[RoleAssignment]] = {}
        self.navigation: Dict[str, NavigationConfig] = {}
        self.set_navigation_error: Optional[RemoteSiteError] = None
        self.failures: Dict[str, RemoteSiteError] = {}
        self.calls: List[tuple] = []
        self.written: Dict[str, NavigationConfig] = {}

    def _enter(self, operation: str, site_url: str) -> None:
        self.calls.append((operation, site_url))
        if site_url in self.failures:
            raise self.failures[site_url]

    async def get_site_info(self, site_url: str) -> SiteInfo:
        self._enter("get_site_info", site_url)
        return SiteInfo(url=site_url, title=self.titles.get(site_url, site_url.rsplit("/", 1)[-1]))

    async def list_lists(self, site_url: str) -> List[ListInfo]:
        self._enter("list_lists", site_url)
        return list(self.lists.get(site_url, []))

    async def list_folder(self, site_url: str, folder_url: str) -> FolderListing:
        self._enter("list_folder", site_url)
        if folder_url in self.failing_folders:
            raise self.failing_folders[folder_url]
        return self.folders.get(folder_url, FolderListing())

    async def list_documents(
        self, site_url: str, library: ListInfo, include_subfolders: bool = True
    ) -> AsyncIterator:
        async for document in walk_folders(
            self.list_folder, site_url, library.server_relative_url, include_subfolders
        ):
            yield document

    async def get_web_securable(self, site_url: str) -> SecurableObject:
        self._enter("get_web_securable", site_url)
        return self.webs[site_url]

    async def list_list_securables(
        self, site_url: str, list_info: ListInfo, include_folders: bool = True, include_items: bool = False
    ) -> AsyncIterator[SecurableObject]:
        self._enter("list_list_securables", site_url)
        for obj in self.list_securables.get(list_info.id, []):
            yield obj

    async def list_role_assignments(self, site_url: str, obj: SecurableObject) -> List[RoleAssignment]:
        self._enter("list_role_assignments", obj.url)
        return list(self.assignments.get(obj.url, []))

    async def get_navigation_config(self, site_url: str) -> NavigationConfig:
        self._enter("get_navigation_config", site_url)
        return self.navigation.get(site_url, NavigationConfig())

    async def set_navigation_config(self, site_url: str, config: NavigationConfig) -> None:
        self._enter("set_navigation_config", site_url)
        if self.set_navigation_error is not None:
            raise self.set_navigation_error
        self.written[site_url] = config
        self.navigation[site_url] = NavigationConfig(dict(config.settings))


def make_list(title: str, item_count: int = 0, base_template: int = 100, hidden: bool = False,
              site_path: str = "/sites/a", list_id: Optional[str] = None) -> ListInfo:
    url_name = "Lists/" + title.replace(" ", "") if base_template != 101 else title.replace(" ", "")
    return ListInfo(
        id=list_id or f"id-{title}",
        title=title,
        server_relative_url=f"{site_path}/{url_name}",
        item_count=item_count,
        hidden=hidden,
        base_template=base_template,
    )


@pytest.fixture
def fake_client() -> FakeRemoteClient:
    return FakeRemoteClient()


@pytest.fixture
def not_found_error() -> RemoteSiteError:
    return RemoteSiteError(RemoteErrorKind.NOT_FOUND)


@pytest.fixture
def db_repo(tmp_path) -> DatabaseRepository:
    repo = DatabaseRepository(str(tmp_path / "test_tasks.db"))
    asyncio.run(repo.initialize_database())
    return repo


@pytest.fixture
def result_store(db_repo) -> ResultStore:
    return ResultStore(db_repo)


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        tenant_id="tid",
        client_id="cid",
        certificate_path="path/to/cert.pem",
    )
