"""
Constants used throughout the SAP OData MCP library.
"""

USER_AGENT = 'SAP-OData-MCP/0.1'

# Default request timeout in milliseconds (matches the connect tool default)
DEFAULT_TIMEOUT_MS = 30000

# Shorter per-probe timeouts in seconds, so fallback sequences stay fast
CATALOG_PROBE_TIMEOUT = 10.0
BASE_PATH_PROBE_TIMEOUT = 10.0
LIVENESS_PROBE_TIMEOUT = 5.0
SERVICE_PROBE_TIMEOUT = 5.0

CSRF_HEADER = 'X-CSRF-Token'
# Values the server sends back instead of a real token
CSRF_SENTINELS = ('required', 'fetch')

# SAP Gateway catalog service, relative to .../sap/opu/odata/sap/.
# Backends differ in path casing and version suffix.
CATALOG_SERVICE_PATHS = [
    '../iwfnd/catalogservice;v=2/ServiceCollection',
    '../IWFND/CATALOGSERVICE;v=2/ServiceCollection',
    '../iwfnd/catalogservice/ServiceCollection',
    '../IWFND/CATALOGSERVICE/ServiceCollection',
]

# Well-known service names probed when no catalog is reachable
COMMON_SERVICE_NAMES = [
    'GWSAMPLE_BASIC',
    'GWDEMO',
    'RMTSAMPLEFLIGHT',
    'API_MATERIAL_SRV',
    'API_BUSINESS_PARTNER',
    'API_SALES_ORDER_SRV',
    'ZMM_MATERIAL_SRV',
    'ZSD_SALES_SRV',
    'ZFI_GL_SRV',
]

# Discovery provenance tags
SOURCE_GATEWAY_CATALOG = 'gateway_catalog'
SOURCE_COMMON_SERVICES = 'common_services_test'
SOURCE_NONE_FOUND = 'none_found'

NONE_FOUND_MESSAGE = (
    'No services found. The base URL exists but specific services need to be '
    'discovered through SAP GUI or by testing known service names.'
)

# Namespaces for OData XML parsing
NAMESPACES = {
    'edmx': 'http://schemas.microsoft.com/ado/2007/06/edmx',
    'edm': 'http://schemas.microsoft.com/ado/2008/09/edm',
    'm': 'http://schemas.microsoft.com/ado/2007/08/dataservices/metadata',
    'sap': 'http://www.sap.com/Protocols/SAPData',
}

# Number of records echoed into a query summary
SAMPLE_RECORD_COUNT = 3
