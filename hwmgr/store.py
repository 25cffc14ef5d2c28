"""Versioned document access and the nodelist inventory store."""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional

import yaml
from kubernetes import client
from kubernetes.client.exceptions import ApiException

from hwmgr.errors import ConflictError, NotFoundError, ParseError
from hwmgr.state import AllocationLedger, HardwareCatalog

logger = logging.getLogger(__name__)

RESOURCES_KEY = "resources"
ALLOCATIONS_KEY = "allocations"


@dataclass
class Document:
    """String key/value document plus the version it was read at."""
    name: str
    data: Dict[str, str] = field(default_factory=dict)
    version: Optional[str] = None


class DocumentStore(ABC):
    """Key/value documents with optimistic (version-checked) updates."""

    @abstractmethod
    def get(self, name: str) -> Document:
        """Return the current document. Raises NotFoundError if absent."""
        raise NotImplementedError

    @abstractmethod
    def update(self, document: Document) -> Document:
        """
        Write the document if its version is still current.

        Raises:
            ConflictError: The stored version moved since the document was read
            NotFoundError: The document no longer exists
        """
        raise NotImplementedError


class MemoryDocumentStore(DocumentStore):
    """Thread-safe in-process document store with integer versions."""

    def __init__(self, documents: Optional[Dict[str, Dict[str, str]]] = None) -> None:
        self._lock = threading.Lock()
        self._docs: Dict[str, Dict[str, str]] = {}
        self._versions: Dict[str, int] = {}
        for name, data in (documents or {}).items():
            self.put(name, data)

    def put(self, name: str, data: Dict[str, str]) -> Document:
        """Create or overwrite a document unconditionally."""
        with self._lock:
            self._docs[name] = dict(data)
            self._versions[name] = self._versions.get(name, 0) + 1
            return Document(name=name, data=dict(data), version=str(self._versions[name]))

    def get(self, name: str) -> Document:
        with self._lock:
            if name not in self._docs:
                raise NotFoundError(f"document {name} not found")
            return Document(name=name, data=copy.deepcopy(self._docs[name]), version=str(self._versions[name]))

    def update(self, document: Document) -> Document:
        with self._lock:
            if document.name not in self._docs:
                raise NotFoundError(f"document {document.name} not found")
            current = str(self._versions[document.name])
            if document.version != current:
                raise ConflictError(
                    f"document {document.name} changed: read at version {document.version}, now {current}"
                )
            self._docs[document.name] = dict(document.data)
            self._versions[document.name] += 1
            return Document(name=document.name, data=dict(document.data), version=str(self._versions[document.name]))


class ConfigMapDocumentStore(DocumentStore):
    """Documents backed by ConfigMaps; resourceVersion provides the version check."""

    def __init__(self, core_api: client.CoreV1Api, namespace: str) -> None:
        self.core = core_api
        self.namespace = namespace

    def get(self, name: str) -> Document:
        try:
            cm = self.core.read_namespaced_config_map(name=name, namespace=self.namespace)
        except ApiException as e:
            if e.status == 404:
                raise NotFoundError(f"configmap {self.namespace}/{name} not found") from e
            logger.error(f"Failed to read configmap {self.namespace}/{name}: status={e.status}, reason={e.reason}")
            raise
        return Document(name=name, data=dict(cm.data or {}), version=cm.metadata.resource_version)

    def update(self, document: Document) -> Document:
        body = client.V1ConfigMap(
            metadata=client.V1ObjectMeta(
                name=document.name,
                namespace=self.namespace,
                resource_version=document.version,
            ),
            data=dict(document.data),
        )
        try:
            cm = self.core.replace_namespaced_config_map(name=document.name, namespace=self.namespace, body=body)
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(f"configmap {self.namespace}/{document.name} was modified concurrently") from e
            if e.status == 404:
                raise NotFoundError(f"configmap {self.namespace}/{document.name} not found") from e
            logger.error(
                f"Failed to update configmap {self.namespace}/{document.name}: status={e.status}, reason={e.reason}"
            )
            raise
        return Document(name=document.name, data=dict(cm.data or {}), version=cm.metadata.resource_version)


@dataclass
class InventorySnapshot:
    """Catalog and ledger parsed from one read of the nodelist document."""
    catalog: HardwareCatalog
    ledger: AllocationLedger
    document: Document


class InventoryStore:
    """Reads the catalog and ledger from the nodelist document and writes the ledger back."""

    def __init__(self, documents: DocumentStore, name: str = "nodelist") -> None:
        self.documents = documents
        self.name = name

    def load(self) -> InventorySnapshot:
        """
        Read and parse the nodelist document.

        Raises:
            NotFoundError: The nodelist document does not exist
            ParseError: The resources section is missing or malformed
        """
        document = self.documents.get(self.name)

        raw_resources = document.data.get(RESOURCES_KEY)
        if raw_resources is None:
            raise ParseError(f"{self.name}: missing '{RESOURCES_KEY}' section")
        try:
            catalog = HardwareCatalog.from_dict(yaml.safe_load(raw_resources))
        except yaml.YAMLError as e:
            raise ParseError(f"{self.name}: unable to parse '{RESOURCES_KEY}': {e}") from e
        except ParseError as e:
            raise ParseError(f"{self.name}: {e}") from e

        return InventorySnapshot(catalog=catalog, ledger=self._parse_ledger(document), document=document)

    def _parse_ledger(self, document: Document) -> AllocationLedger:
        raw = document.data.get(ALLOCATIONS_KEY)
        if not raw:
            return AllocationLedger()
        try:
            return AllocationLedger.from_dict(yaml.safe_load(raw))
        except (yaml.YAMLError, ParseError) as e:
            # No allocations yet is the normal initial state
            logger.info(f"Unable to parse allocations from {self.name}, treating as empty: {e}")
            return AllocationLedger()

    def save(self, snapshot: InventorySnapshot) -> InventorySnapshot:
        """
        Write the snapshot's ledger back at the version it was read.

        Raises:
            ConflictError: Another writer updated the document first
        """
        data = dict(snapshot.document.data)
        data[ALLOCATIONS_KEY] = dump_ledger(snapshot.ledger)
        written = self.documents.update(Document(name=self.name, data=data, version=snapshot.document.version))
        return InventorySnapshot(catalog=snapshot.catalog, ledger=snapshot.ledger, document=written)


def dump_ledger(ledger: AllocationLedger) -> str:
    return yaml.safe_dump(ledger.to_dict(), default_flow_style=False, sort_keys=False)


def load_manifest(path: str) -> Dict[str, str]:
    """Read the data section of a ConfigMap manifest file."""
    with open(path, "r") as f:
        manifest = yaml.safe_load(f)
    if not isinstance(manifest, dict) or not isinstance(manifest.get("data"), dict):
        raise ParseError(f"{path}: not a ConfigMap manifest with a data section")
    return {str(k): str(v) for k, v in manifest["data"].items()}
