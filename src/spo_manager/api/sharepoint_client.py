import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote, urlparse

import aiohttp

from ..core.aggregation import walk_folders
from ..core.models import (
    DocumentInfo,
    FolderListing,
    ListInfo,
    NavigationConfig,
    ObjectType,
    RoleAssignment,
    SecurableObject,
    SiteInfo,
    parse_datetime,
)
from ..core.navigation import NAVIGATION_SETTINGS
from ..utils.exceptions import (
    MaxRetriesExceededError,
    RemoteErrorKind,
    RemoteSiteError,
    SharePointAPIError,
)
from ..utils.retry_handler import THROTTLE_STATUS_CODES, RetryConfig, RetryStrategy
from .auth_manager import AuthenticationManager

logger = logging.getLogger(__name__)

LIST_FIELDS = (
    "Id,Title,ItemCount,Hidden,Created,LastItemModifiedDate,BaseTemplate,"
    "RootFolder/ServerRelativeUrl"
)
FILE_FIELDS = (
    "Name,ServerRelativeUrl,Length,TimeCreated,TimeLastModified,UIVersionLabel,"
    "Author/Title,ModifiedBy/Title"
)
ITEM_FIELDS = "Id,Title,FileRef,FileLeafRef,FileSystemObjectType,HasUniqueRoleAssignments"
ITEM_PAGE_SIZE = 5000

# FileSystemObjectType value for folders
FOLDER_OBJECT_TYPE = 1


def _unwrap(data: Any) -> Any:
    """Strip the verbose OData ``d`` envelope if present."""
    if isinstance(data, dict) and isinstance(data.get("d"), dict):
        return data["d"]
    return data


def _results(data: Any) -> List[Dict[str, Any]]:
    """Collection payload for both the ``value`` and ``d.results`` response shapes."""
    data = _unwrap(data)
    if not isinstance(data, dict):
        return []
    if "value" in data:
        return data["value"] or []
    return data.get("results") or []


def _next_link(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    return (
        data.get("odata.nextLink")
        or data.get("@odata.nextLink")
        or _unwrap(data).get("__next")
    )


def _nested_results(value: Any) -> List[Any]:
    if isinstance(value, dict):
        return value.get("results") or []
    return value or []


def _quote_path(server_relative_url: str) -> str:
    return quote(server_relative_url.replace("'", "''"))


def _host_url(site_url: str) -> str:
    parsed = urlparse(site_url)
    return f"{parsed.scheme}://{parsed.netloc}"


def _parent_path(server_relative_url: str) -> str:
    return server_relative_url.rstrip("/").rsplit("/", 1)[0]


def _major_version(label: Optional[str]) -> int:
    """Version count from a UI version label such as "3.0"; 1 when unknown."""
    try:
        return max(int(str(label).split(".", 1)[0]), 1)
    except (TypeError, ValueError):
        return 1


class SharePointAPIClient:
    """Client for the SharePoint REST API with throttling retry.

    Every failure is raised as a RemoteSiteError classified by RemoteErrorKind.
    """

    def __init__(
        self,
        auth_manager: AuthenticationManager,
        retry_strategy: RetryStrategy | None = None,
    ) -> None:
        self.auth_manager = auth_manager
        self.retry_strategy = retry_strategy or RetryStrategy(RetryConfig())
        self._connector = None
        self._session = None

    async def __aenter__(self) -> "SharePointAPIClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the shared aiohttp session."""
        if self._session is None or self._session.closed:
            self._connector = aiohttp.TCPConnector(
                limit=20,
                limit_per_host=10,
                ttl_dns_cache=300,
                keepalive_timeout=30,
            )
            timeout = aiohttp.ClientTimeout(total=None, connect=10)
            self._session = aiohttp.ClientSession(connector=self._connector, timeout=timeout)
        return self._session

    async def close(self):
        """Close the aiohttp session and connector."""
        if self._session and not self._session.closed:
            await self._session.close()
        if self._connector:
            await self._connector.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        extra_headers = kwargs.pop("headers", None) or {}

        async def _do_request():
            start = time.time()
            token = await self.auth_manager.get_access_token(url)

            headers = dict(extra_headers)
            headers["Authorization"] = f"Bearer {token}"
            headers.setdefault("Accept", "application/json;odata=nometadata")
            if method == "POST":
                headers.setdefault("Content-Type", "application/json;odata=nometadata")

            session = await self._get_session()
            send = session.get if method == "GET" else session.post
            resp = await send(url, headers=headers, **kwargs)
            logger.debug(f"{method} {url} -> {resp.status}")

            if resp.status in THROTTLE_STATUS_CODES:
                raise SharePointAPIError(
                    "Throttled",
                    status_code=resp.status,
                    retry_after=self._retry_after(resp),
                )
            if resp.status >= 400:
                try:
                    detail = await resp.text()
                    logger.debug(f"HTTP {resp.status} response body: {detail}")
                except aiohttp.ClientError:
                    logger.debug("Could not read error response body")
                logger.error("%s %s returned HTTP %s", method, url, resp.status)
                raise RemoteSiteError.from_status(resp.status, url=url)
            if resp.status == 204:
                return {}
            try:
                data = await resp.json()
            except ValueError as exc:
                logger.error("%s %s returned a body that is not valid JSON: %s", method, url, exc)
                raise RemoteSiteError(
                    RemoteErrorKind.UNKNOWN,
                    "Invalid JSON response",
                    status_code=resp.status,
                    url=url,
                ) from exc
            logger.debug("%s %s succeeded in %.2fs", method, url, time.time() - start)
            return data

        try:
            return await self.retry_strategy.execute_with_retry(url, _do_request)
        except MaxRetriesExceededError as exc:
            raise RemoteSiteError(
                RemoteErrorKind.THROTTLED, status_code=exc.status_code, url=url
            ) from exc
        except asyncio.TimeoutError as exc:
            raise RemoteSiteError(RemoteErrorKind.TIMEOUT, url=url) from exc
        except aiohttp.ClientResponseError as exc:
            raise RemoteSiteError.from_status(exc.status, url=url, detail=exc.message) from exc
        except aiohttp.ClientError as exc:
            raise RemoteSiteError(
                RemoteErrorKind.UNKNOWN, f"Connection error: {exc}", url=url
            ) from exc

    @staticmethod
    def _retry_after(resp) -> Optional[float]:
        value = resp.headers.get("Retry-After")
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    async def get_json(self, url: str, **kwargs) -> Any:
        return await self._request("GET", url, **kwargs)

    async def post_json(self, url: str, **kwargs) -> Any:
        return await self._request("POST", url, **kwargs)

    async def get_paged(self, url: str) -> AsyncIterator[Dict[str, Any]]:
        """Yield every record of a collection, following next links."""
        next_url: Optional[str] = url
        while next_url:
            data = await self.get_json(next_url)
            for record in _results(data):
                yield record
            next_url = _next_link(data)

    # ------------------------------------------------------------------
    # Sites and lists
    # ------------------------------------------------------------------

    async def get_site_info(self, site_url: str) -> SiteInfo:
        data = _unwrap(await self.get_json(f"{site_url}/_api/web?$select=Title,Url"))
        return SiteInfo(url=data.get("Url") or site_url, title=data.get("Title", ""))

    async def list_lists(self, site_url: str) -> List[ListInfo]:
        url = f"{site_url}/_api/web/lists?$select={LIST_FIELDS}&$expand=RootFolder"
        lists = []
        async for record in self.get_paged(url):
            lists.append(self._parse_list(record))
        logger.debug(f"Found {len(lists)} lists on {site_url}")
        return lists

    @staticmethod
    def _parse_list(record: Dict[str, Any]) -> ListInfo:
        root_folder = record.get("RootFolder") or {}
        return ListInfo(
            id=record.get("Id", ""),
            title=record.get("Title", ""),
            server_relative_url=root_folder.get("ServerRelativeUrl", ""),
            item_count=int(record.get("ItemCount") or 0),
            hidden=bool(record.get("Hidden", False)),
            base_template=int(record.get("BaseTemplate") or 100),
            created=parse_datetime(record.get("Created")),
            last_modified=parse_datetime(record.get("LastItemModifiedDate")),
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def list_folder(self, site_url: str, folder_url: str) -> FolderListing:
        """Files and subfolders directly inside one folder."""
        base = f"{site_url}/_api/web/GetFolderByServerRelativeUrl('{_quote_path(folder_url)}')"
        listing = FolderListing()
        async for record in self.get_paged(
            f"{base}/Files?$select={FILE_FIELDS}&$expand=Author,ModifiedBy"
        ):
            listing.files.append(DocumentInfo(
                name=record.get("Name", ""),
                server_relative_url=record.get("ServerRelativeUrl", ""),
                size_bytes=int(record.get("Length") or 0),
                created=parse_datetime(record.get("TimeCreated")),
                modified=parse_datetime(record.get("TimeLastModified")),
                created_by=(record.get("Author") or {}).get("Title", ""),
                modified_by=(record.get("ModifiedBy") or {}).get("Title", ""),
                version_count=_major_version(record.get("UIVersionLabel")),
            ))
        async for record in self.get_paged(f"{base}/Folders?$select=Name,ServerRelativeUrl"):
            listing.folders.append(record.get("ServerRelativeUrl", ""))
        return listing

    async def list_documents(
        self, site_url: str, library: ListInfo, include_subfolders: bool = True
    ) -> AsyncIterator[DocumentInfo]:
        """Lazily yield every file in a document library.

        With ``include_subfolders`` off only files in the library root are listed.
        """
        root = library.server_relative_url.rstrip("/")

        async def list_library_folder(site: str, folder_url: str) -> FolderListing:
            listing = await self.list_folder(site, folder_url)
            if folder_url.rstrip("/").lower() == root.lower():
                # The library's Forms folder holds view pages, not documents.
                listing.folders = [
                    f for f in listing.folders if f.rstrip("/").lower() != f"{root.lower()}/forms"
                ]
            return listing

        async for document in walk_folders(
            list_library_folder, site_url, root, include_subfolders=include_subfolders
        ):
            yield document

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def get_web_securable(self, site_url: str) -> SecurableObject:
        data = _unwrap(await self.get_json(
            f"{site_url}/_api/web?$select=Title,Url,ServerRelativeUrl,HasUniqueRoleAssignments"
        ))
        return SecurableObject(
            object_type=ObjectType.SITE,
            title=data.get("Title", ""),
            url=site_url,
            path=data.get("ServerRelativeUrl") or urlparse(site_url).path,
            has_unique_role_assignments=bool(data.get("HasUniqueRoleAssignments", True)),
        )

    async def list_list_securables(
        self,
        site_url: str,
        list_info: ListInfo,
        include_folders: bool = True,
        include_items: bool = False,
    ) -> AsyncIterator[SecurableObject]:
        """Yield the list and then its folders and items, parents before children.

        Folders are yielded whenever items are requested so inheritance can
        be traced through them.
        """
        list_api = f"{site_url}/_api/web/lists(guid'{list_info.id}')"
        data = _unwrap(await self.get_json(f"{list_api}?$select=HasUniqueRoleAssignments"))
        list_url = list_info.absolute_url(site_url)
        yield SecurableObject(
            object_type=ObjectType.LIST,
            title=list_info.title,
            url=list_url,
            path=list_info.server_relative_url,
            has_unique_role_assignments=bool(data.get("HasUniqueRoleAssignments", False)),
            parent_url=site_url,
            list_id=list_info.id,
        )
        if not (include_folders or include_items):
            return

        records = []
        async for record in self.get_paged(
            f"{list_api}/items?$select={ITEM_FIELDS}&$top={ITEM_PAGE_SIZE}"
        ):
            records.append(record)
        records.sort(key=lambda r: (r.get("FileRef") or "").count("/"))

        host = _host_url(site_url)
        root = list_info.server_relative_url.rstrip("/").lower()
        for record in records:
            file_ref = record.get("FileRef") or ""
            is_folder = record.get("FileSystemObjectType") == FOLDER_OBJECT_TYPE
            if not is_folder and not include_items:
                continue
            parent_path = _parent_path(file_ref)
            parent_url = list_url if parent_path.lower() == root else f"{host}{parent_path}"
            yield SecurableObject(
                object_type=ObjectType.FOLDER if is_folder else ObjectType.ITEM,
                title=record.get("FileLeafRef") or record.get("Title") or "",
                url=f"{host}{file_ref}",
                path=file_ref,
                has_unique_role_assignments=bool(record.get("HasUniqueRoleAssignments", False)),
                parent_url=parent_url,
                list_id=list_info.id,
                item_id=record.get("Id"),
            )

    async def list_role_assignments(self, site_url: str, obj: SecurableObject) -> List[RoleAssignment]:
        if obj.object_type is ObjectType.SITE:
            base = f"{site_url}/_api/web"
        elif obj.object_type is ObjectType.LIST:
            base = f"{site_url}/_api/web/lists(guid'{obj.list_id}')"
        else:
            base = f"{site_url}/_api/web/lists(guid'{obj.list_id}')/items({obj.item_id})"

        assignments = []
        async for record in self.get_paged(
            f"{base}/roleassignments?$expand=Member,RoleDefinitionBindings"
        ):
            member = record.get("Member") or {}
            roles = _nested_results(record.get("RoleDefinitionBindings"))
            assignments.append(RoleAssignment(
                principal_name=member.get("Title", ""),
                principal_login=member.get("LoginName", ""),
                principal_kind=int(member.get("PrincipalType") or 1),
                role_names=[r.get("Name", "") for r in roles],
            ))
        return assignments

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def get_navigation_config(self, site_url: str) -> NavigationConfig:
        data = _unwrap(await self.get_json(
            f"{site_url}/_api/web?$select={','.join(NAVIGATION_SETTINGS)}"
        ))
        return NavigationConfig({name: data[name] for name in NAVIGATION_SETTINGS if name in data})

    async def get_form_digest(self, site_url: str) -> str:
        data = _unwrap(await self.post_json(f"{site_url}/_api/contextinfo"))
        digest = data.get("FormDigestValue") or (
            data.get("GetContextWebInformation") or {}
        ).get("FormDigestValue")
        if not digest:
            raise RemoteSiteError(
                RemoteErrorKind.UNKNOWN, "No form digest in contextinfo response", url=site_url
            )
        return digest

    async def set_navigation_config(self, site_url: str, config: NavigationConfig) -> None:
        digest = await self.get_form_digest(site_url)
        await self.post_json(
            f"{site_url}/_api/web",
            headers={
                "X-HTTP-Method": "MERGE",
                "IF-MATCH": "*",
                "X-RequestDigest": digest,
            },
            json=dict(config.settings),
        )
        logger.info(f"Updated navigation settings on {site_url}")
