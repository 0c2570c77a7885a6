import asyncio
import json
import os
import re
import zipfile
from typing import List, Optional

import requests

from manager.config import ManagerConfig
from manager.models import InstalledPlugin, ServerInfo
from manager.utils import LoggerSetup

_YML_NAME = re.compile(r'''^name:\s*['"]?(.+?)['"]?\s*$''', re.MULTILINE)
_YML_VERSION = re.compile(r'''^version:\s*['"]?(.+?)['"]?\s*$''', re.MULTILINE)


def read_plugin_metadata(jar_path: str):
    """(name, version) from plugin.yml, falling back to fabric.mod.json."""
    try:
        with zipfile.ZipFile(jar_path) as jar:
            names = jar.namelist()
            if 'plugin.yml' in names:
                text = jar.read('plugin.yml').decode('utf-8', errors='replace')
                name = _YML_NAME.search(text)
                version = _YML_VERSION.search(text)
                return (name.group(1).strip() if name else None,
                        version.group(1).strip() if version else None)
            if 'fabric.mod.json' in names:
                data = json.loads(jar.read('fabric.mod.json'))
                return data.get('name') or data.get('id'), data.get('version')
    except (OSError, zipfile.BadZipFile, ValueError):
        pass
    return None, None


class LocalPluginInventory:
    """Plugin jars in ``<server directory>/plugins``."""

    async def list_plugins(self, server: ServerInfo) -> List[InstalledPlugin]:
        if not server.directory:
            return []
        plugins_dir = os.path.join(server.directory, 'plugins')
        if not os.path.isdir(plugins_dir):
            return []

        plugins = []
        for filename in sorted(os.listdir(plugins_dir)):
            if not filename.endswith('.jar'):
                continue
            name, version = await asyncio.to_thread(
                read_plugin_metadata, os.path.join(plugins_dir, filename)
            )
            plugins.append(InstalledPlugin(filename=filename, name=name, version=version))
        return plugins


class ModrinthCatalog:
    def __init__(self, api_url: str = ManagerConfig.MODRINTH_API_URL):
        self.api_url = api_url
        self.session = requests.Session()
        self.session.headers['User-Agent'] = ManagerConfig.USER_AGENT
        self.logger = LoggerSetup.setup('plugins')

    def _get(self, path: str, params: dict):
        try:
            response = self.session.get(f"{self.api_url}{path}", params=params,
                                        timeout=ManagerConfig.MODRINTH_TIMEOUT)
            if not response.ok:
                self.logger.warning(f"Modrinth request {path} returned {response.status_code}")
                return None
            return response.json()
        except (requests.RequestException, ValueError) as e:
            self.logger.error(f"Modrinth request failed ({path}): {e}")
            return None

    async def search(self, query: str) -> list:
        params = {
            'query': query,
            'limit': 5,
            'facets': json.dumps([['project_type:plugin', 'project_type:mod']]),
        }
        data = await asyncio.to_thread(self._get, '/search', params)
        if not isinstance(data, dict):
            return []
        return [hit for hit in data.get('hits') or [] if isinstance(hit, dict)]

    async def find_project(self, plugin_name: str) -> Optional[str]:
        hits = await self.search(plugin_name)
        if not hits:
            return None
        wanted = plugin_name.lower()
        for hit in hits:
            if (hit.get('slug') or '').lower() == wanted or (hit.get('title') or '').lower() == wanted:
                return hit.get('project_id')
        return hits[0].get('project_id')

    async def latest_version(self, catalog_ref: str, game_version: Optional[str] = None) -> Optional[str]:
        params = {'loaders': json.dumps(ManagerConfig.PLUGIN_SERVER_LOADERS)}
        if game_version:
            params['game_versions'] = json.dumps([game_version])
        versions = await asyncio.to_thread(self._get, f"/project/{catalog_ref}/version", params)
        if isinstance(versions, list) and versions and isinstance(versions[0], dict):
            return versions[0].get('version_number')
        return None
