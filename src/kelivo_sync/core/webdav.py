import logging
import re
import threading
from datetime import datetime
from email.utils import parsedate_to_datetime
from urllib.parse import unquote, urljoin, urlparse
from xml.etree import ElementTree

import requests

from ..backup.models import BackupFileItem, WebDavConfig
from .errors import AuthError, TransportError

logger = logging.getLogger(__name__)

_PROPFIND_PROBE_BODY = (
    '<?xml version="1.0" encoding="utf-8" ?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:displayname/></d:prop></d:propfind>'
)

_PROPFIND_LIST_BODY = (
    '<?xml version="1.0" encoding="utf-8" ?>\n'
    '<d:propfind xmlns:d="DAV:">\n'
    "  <d:prop>\n"
    "    <d:displayname/>\n"
    "    <d:getcontentlength/>\n"
    "    <d:getlastmodified/>\n"
    "  </d:prop>\n"
    "</d:propfind>"
)

# kelivo_backup_2025-01-19T12-34-56.123456.zip
_BACKUP_NAME_PATTERN = re.compile(
    r"kelivo_backup_(\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2})(?:\.(\d+))?\.zip"
)

_MKCOL_OK = (200, 201, 405)


def timestamp_from_backup_name(name: str) -> datetime | None:
    """Recover the export time embedded in a backup file name.

    The time portion uses ``-`` instead of ``:`` so the name is valid on
    every filesystem.  Returns a naive local datetime, or ``None`` when the
    name does not follow the convention.
    """
    match = _BACKUP_NAME_PATTERN.search(name)
    if match is None:
        return None
    try:
        stamp = datetime.strptime(match.group(1), "%Y-%m-%dT%H-%M-%S")
    except ValueError:
        return None
    fraction = match.group(2)
    if fraction:
        stamp = stamp.replace(microsecond=int(fraction[:6].ljust(6, "0")))
    return stamp


def parse_http_date(value: str) -> datetime | None:
    """Parse a ``getlastmodified`` value (RFC 1123, or ISO 8601 as fallback)."""
    value = value.strip()
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        pass
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _sort_key(item: BackupFileItem) -> float:
    if item.last_modified is None:
        return float("-inf")
    return item.last_modified.timestamp()


class WebDavClient:
    """Stateless WebDAV transport for backup archives.

    Every method takes the ``WebDavConfig`` it operates on; the client only
    holds connection pools (one ``requests.Session`` per thread) and
    transport settings.

    Args:
        insecure: Skip TLS certificate verification.
        timeout: ``(connect, read)`` timeout passed to requests.
    """

    def __init__(
        self,
        insecure: bool = False,
        timeout: tuple[float, float] = (10, 300),
    ):
        self.insecure = insecure
        self.timeout = timeout
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.verify = not self.insecure
        return session

    def _request(
        self,
        cfg: WebDavConfig,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        data: bytes | str | None = None,
    ) -> requests.Response:
        """Send one request, attaching Basic auth when a username is set."""
        auth = None
        if cfg.username.strip():
            auth = (cfg.username, cfg.password)
        logger.debug("%s %s", method, url)
        return self._get_session().request(
            method,
            url,
            headers=headers or {},
            data=data,
            auth=auth,
            timeout=self.timeout,
        )

    def _propfind(
        self, cfg: WebDavConfig, url: str, depth: int, body: str
    ) -> requests.Response:
        return self._request(
            cfg,
            "PROPFIND",
            url,
            headers={
                "Depth": str(depth),
                "Content-Type": "application/xml; charset=utf-8",
            },
            data=body.encode("utf-8"),
        )

    @staticmethod
    def _check_status(
        operation: str, url: str, response: requests.Response
    ) -> None:
        """Raise unless the status is 2xx/3xx (207 included)."""
        status = response.status_code
        if status == 401:
            raise AuthError(url)
        if not (200 <= status < 400):
            raise TransportError(operation, url, status)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def test_connection(self, cfg: WebDavConfig) -> None:
        """Probe the configured collection with a depth-1 PROPFIND.

        Raises:
            AuthError: On 401.
            TransportError: On any other status outside 2xx/207.
        """
        url = cfg.collection_url
        response = self._propfind(cfg, url, 1, _PROPFIND_PROBE_BODY)
        if response.status_code == 401:
            raise AuthError(url)
        if response.status_code != 207 and not (
            200 <= response.status_code < 300
        ):
            raise TransportError("PROPFIND", url, response.status_code)

    def ensure_collection(self, cfg: WebDavConfig) -> list[str]:
        """Create the configured collection path one segment at a time.

        Each prefix is probed with a depth-0 PROPFIND; a 404 triggers MKCOL.
        MKCOL answering 405 (already exists) counts as success, so calling
        this repeatedly is safe.

        Returns:
            URLs of the collections that were created by this call.

        Raises:
            AuthError: On 401 from the probe or MKCOL.
            TransportError: On any other unexpected status.
        """
        created: list[str] = []
        acc = cfg.base_url
        for segment in cfg.path_segments:
            acc = f"{acc}/{segment}"
            url = f"{acc}/"
            probe = self._propfind(cfg, url, 0, _PROPFIND_PROBE_BODY)
            status = probe.status_code
            if status == 404:
                mk = self._request(cfg, "MKCOL", url)
                if mk.status_code == 401:
                    raise AuthError(url)
                if mk.status_code not in _MKCOL_OK:
                    raise TransportError("MKCOL", url, mk.status_code)
                if mk.status_code != 405:
                    logger.info("Created WebDAV collection %s", url)
                    created.append(url)
            else:
                self._check_status("PROPFIND", url, probe)
        return created

    def list_collection(self, cfg: WebDavConfig) -> list[BackupFileItem]:
        """List the files in the configured collection, newest first.

        The collection's own entry and sub-collections are skipped.  When
        the server omits ``getlastmodified`` the timestamp is recovered
        from the backup file name.  Entries without any timestamp sort last.

        Raises:
            AuthError: On 401.
            TransportError: On any other status outside 2xx/207.
        """
        url = cfg.collection_url
        response = self._propfind(cfg, url, 1, _PROPFIND_LIST_BODY)
        if response.status_code == 401:
            raise AuthError(url)
        if not (200 <= response.status_code < 300):
            raise TransportError("PROPFIND", url, response.status_code)

        items = self._parse_multistatus(url, response.content)
        items.sort(key=_sort_key, reverse=True)
        return items

    def _parse_multistatus(
        self, collection_url: str, content: bytes
    ) -> list[BackupFileItem]:
        try:
            root = ElementTree.fromstring(content)
        except ElementTree.ParseError as exc:
            raise TransportError("PROPFIND", collection_url, 207) from exc

        items: list[BackupFileItem] = []
        for resp in root.findall(".//{*}response"):
            href_el = resp.find("{*}href")
            href = (href_el.text or "").strip() if href_el is not None else ""
            if not href:
                continue
            absolute = urljoin(collection_url, href)
            if absolute == collection_url:
                continue
            # Sub-collections
            if absolute.endswith("/"):
                continue

            name = _element_text(resp, "displayname")
            if not name:
                name = unquote(urlparse(absolute).path.rsplit("/", 1)[-1])

            size_text = _element_text(resp, "getcontentlength")
            try:
                size = int(size_text) if size_text else 0
            except ValueError:
                size = 0

            modified = parse_http_date(
                _element_text(resp, "getlastmodified")
            )
            if modified is None:
                modified = timestamp_from_backup_name(name)

            items.append(
                BackupFileItem(
                    href=absolute,
                    display_name=name,
                    size=size,
                    last_modified=modified,
                )
            )
        return items

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def upload(self, cfg: WebDavConfig, data: bytes, name: str) -> str:
        """PUT *data* as *name* inside the collection.

        Returns:
            The URL the archive was uploaded to.
        """
        url = cfg.file_url(name)
        response = self._request(
            cfg,
            "PUT",
            url,
            headers={"content-type": "application/zip"},
            data=data,
        )
        self._check_status("PUT", url, response)
        logger.info("Uploaded %s (%d bytes)", url, len(data))
        return url

    def download(self, cfg: WebDavConfig, item: BackupFileItem) -> bytes:
        """GET the archive behind *item*."""
        response = self._request(cfg, "GET", item.href)
        self._check_status("GET", item.href, response)
        return response.content

    def delete(self, cfg: WebDavConfig, item: BackupFileItem) -> None:
        """DELETE the archive behind *item*."""
        response = self._request(cfg, "DELETE", item.href)
        self._check_status("DELETE", item.href, response)
        logger.info("Deleted %s", item.href)


def _element_text(parent: ElementTree.Element, name: str) -> str:
    el = parent.find(f".//{{*}}{name}")
    if el is None or el.text is None:
        return ""
    return el.text.strip()
