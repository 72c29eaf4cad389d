"""
OData metadata parser for extracting entity types, entity sets and function imports.
"""

import sys
from datetime import datetime
from typing import List, Union

from lxml import etree

from .constants import NAMESPACES
from .models import EntityProperty, EntitySet, EntityType, FunctionImport, ODataMetadata


class MetadataParser:
    """Parses an OData ``$metadata`` document into an ODataMetadata model.

    Elements are matched by local name so the parser works across the EDM
    namespace versions used by OData v2 and v4 services.
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        # No DTD/entity expansion and no network lookups for untrusted documents
        self._xml_parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=False)

    def _log_verbose(self, message: str):
        """Prints message to stderr only if verbose mode is enabled."""
        if self.verbose:
            timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]
            print(f"[{timestamp} Parser VERBOSE] {message}", file=sys.stderr)

    def parse(self, document: Union[str, bytes]) -> ODataMetadata:
        """Parse the metadata document. Never raises; failures yield an empty model carrying the raw document."""
        content = document.encode('utf-8') if isinstance(document, str) else document
        try:
            root = etree.fromstring(content, parser=self._xml_parser)
        except (etree.XMLSyntaxError, ValueError) as parse_err:
            print(f"WARNING: Could not parse metadata document: {parse_err}", file=sys.stderr)
            return ODataMetadata(raw=self._raw_text(content))

        try:
            schemas = root.xpath("//*[local-name()='Schema']")
            if not schemas:
                self._log_verbose("Warning: No Schema element found in metadata.")
                return ODataMetadata()

            entities: List[EntityType] = []
            functions: List[FunctionImport] = []
            entity_sets: List[EntitySet] = []
            for schema in schemas:
                entities.extend(self._parse_entity_types(schema))
                for container in schema.xpath("./*[local-name()='EntityContainer']"):
                    entity_sets.extend(self._parse_entity_sets(container))
                    functions.extend(self._parse_function_imports(container))

            self._log_verbose(f"Parsing complete. Found {len(entities)} types, {len(entity_sets)} sets, {len(functions)} functions.")
            return ODataMetadata(entities=entities, functions=functions, entity_sets=entity_sets)
        except Exception as xml_error:
            print(f"WARNING: Error processing XML metadata: {xml_error}", file=sys.stderr)
            return ODataMetadata(raw=self._raw_text(content))

    @staticmethod
    def _raw_text(content: bytes) -> str:
        return content.decode('utf-8', errors='replace')

    def _parse_entity_types(self, schema) -> List[EntityType]:
        """Parse EntityType elements from one schema."""
        entity_types = []
        for et_elem in schema.xpath("./*[local-name()='EntityType']"):
            name = et_elem.get('Name')
            if not name: continue

            key_props_names = [
                prop_ref.get('Name')
                for prop_ref in et_elem.xpath("./*[local-name()='Key']/*[local-name()='PropertyRef']")
                if prop_ref.get('Name')
            ]

            properties = []
            for prop_elem in et_elem.xpath("./*[local-name()='Property']"):
                prop_name = prop_elem.get('Name')
                prop_type = prop_elem.get('Type')
                if not prop_name or not prop_type: continue
                properties.append(EntityProperty(
                    name=prop_name,
                    type=prop_type,
                    nullable=prop_elem.get('Nullable') != 'false',
                    is_key=prop_name in key_props_names,
                ))

            entity_types.append(EntityType(name=name, properties=properties, key_properties=key_props_names))
        return entity_types

    def _parse_entity_sets(self, container) -> List[EntitySet]:
        entity_sets = []
        for es_elem in container.xpath("./*[local-name()='EntitySet']"):
            name = es_elem.get('Name')
            entity_type_fqn = es_elem.get('EntityType')
            if not name or not entity_type_fqn: continue
            # Namespace.Type -> Type
            entity_sets.append(EntitySet(name=name, entity_type=entity_type_fqn.split('.')[-1]))
        return entity_sets

    def _parse_function_imports(self, container) -> List[FunctionImport]:
        """Parse FunctionImport elements from an entity container."""
        function_imports = []
        for func_elem in container.xpath("./*[local-name()='FunctionImport']"):
            name = func_elem.get('Name')
            if not name: continue

            # Look for metadata namespace first, then try without
            http_method = func_elem.get(f"{{{NAMESPACES['m']}}}HttpMethod") or func_elem.get('HttpMethod') or 'GET'

            parameters = []
            for param_elem in func_elem.xpath("./*[local-name()='Parameter']"):
                param_name = param_elem.get('Name')
                param_type = param_elem.get('Type')
                if not param_name or not param_type: continue
                # SAP Mode attribute: 'In', 'Out', 'InOut'. Output-only parameters are not inputs.
                mode = param_elem.get(f"{{{NAMESPACES['sap']}}}Mode") or param_elem.get('Mode') or 'In'
                if mode.lower() not in ('in', 'inout'):
                    continue
                parameters.append(EntityProperty(
                    name=param_name,
                    type=param_type,
                    nullable=param_elem.get('Nullable') != 'false',
                ))

            function_imports.append(FunctionImport(
                name=name,
                return_type=func_elem.get('ReturnType'),
                http_method=http_method.upper(),
                parameters=parameters,
            ))
        return function_imports
