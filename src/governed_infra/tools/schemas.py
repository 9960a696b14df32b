"""JSON Schema definitions for the governed, scan and remediation tools."""

from __future__ import annotations

from typing import Any

RESOURCE_KINDS = ["appServicePlan", "webApp", "keyVault", "storageAccount", "logAnalytics", "vnet"]
SEVERITIES = ["info", "low", "medium", "high"]

_NAME = {"type": "string", "minLength": 1, "maxLength": 90}
_LOCATION = {
    "type": "string",
    "minLength": 1,
    "maxLength": 64,
    "description": "Azure region, e.g. 'eastus' or 'usgovvirginia'.",
}
_TAGS = {
    "type": "object",
    "additionalProperties": {"type": "string"},
    "description": "Resource tags; policy may require specific keys.",
}

# Shared by every governed tool; split off before the action sees its payload
CONTROL_PROPERTIES: dict[str, Any] = {
    "confirm": {
        "type": "boolean",
        "default": False,
        "description": "Execute the change. Without it the call only returns a plan to review.",
    },
    "dryRun": {
        "type": "boolean",
        "default": False,
        "description": "Plan only; never executes, even with confirm=true.",
    },
    "context": {
        "type": "object",
        "description": "Caller context (upn, alias, ...) used for audit and policy templates.",
    },
}


def governed_schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {**properties, **CONTROL_PROPERTIES},
        "required": required,
        "additionalProperties": False,
    }


CREATE_RESOURCE_GROUP_SCHEMA = governed_schema(
    {"name": _NAME, "location": _LOCATION, "tags": _TAGS},
    ["name", "location"],
)

CREATE_APP_SERVICE_PLAN_SCHEMA = governed_schema(
    {
        "resourceGroupName": _NAME,
        "name": _NAME,
        "location": _LOCATION,
        "sku": {"type": "string", "default": "P1v3", "description": "Plan SKU name, e.g. 'P1v3'."},
        "tags": _TAGS,
    },
    ["resourceGroupName", "name", "location"],
)

CREATE_WEB_APP_SCHEMA = governed_schema(
    {
        "resourceGroupName": _NAME,
        "name": _NAME,
        "location": _LOCATION,
        "appServicePlanName": _NAME,
        "httpsOnly": {"type": "boolean", "default": True},
        "minimumTlsVersion": {"type": "string", "enum": ["1.2", "1.3"], "default": "1.2"},
        "ftpsState": {
            "type": "string",
            "enum": ["Disabled", "FtpsOnly", "AllAllowed"],
            "default": "Disabled",
        },
        "linuxFxVersion": {"type": "string", "description": "Runtime stack, e.g. 'NODE|20-lts'."},
        "tags": _TAGS,
    },
    ["resourceGroupName", "name", "location", "appServicePlanName"],
)

CREATE_KEY_VAULT_SCHEMA = governed_schema(
    {
        "resourceGroupName": _NAME,
        "name": {"type": "string", "minLength": 3, "maxLength": 24},
        "location": _LOCATION,
        "tenantId": {"type": "string", "minLength": 1},
        "skuName": {"type": "string", "enum": ["standard", "premium"], "default": "standard"},
        "enableRbacAuthorization": {"type": "boolean", "default": True},
        "enablePurgeProtection": {"type": "boolean", "default": True},
        "publicNetworkAccess": {
            "type": "string",
            "enum": ["Enabled", "Disabled"],
            "default": "Disabled",
        },
        "tags": _TAGS,
    },
    ["resourceGroupName", "name", "location", "tenantId"],
)

CREATE_STORAGE_ACCOUNT_SCHEMA = governed_schema(
    {
        "resourceGroupName": _NAME,
        "name": {"type": "string", "pattern": "^[a-z0-9]{3,24}$"},
        "location": _LOCATION,
        "skuName": {"type": "string", "default": "Standard_LRS"},
        "kind": {"type": "string", "default": "StorageV2"},
        "tags": _TAGS,
    },
    ["resourceGroupName", "name", "location"],
)

CREATE_LOG_ANALYTICS_SCHEMA = governed_schema(
    {
        "resourceGroupName": _NAME,
        "name": {"type": "string", "minLength": 4, "maxLength": 63},
        "location": _LOCATION,
        "retentionInDays": {"type": "integer", "minimum": 30, "maximum": 730, "default": 30},
        "skuName": {"type": "string", "default": "PerGB2018"},
        "tags": _TAGS,
    },
    ["resourceGroupName", "name", "location"],
)

_SCAN_FILTERS: dict[str, Any] = {
    "profile": {"type": "string", "description": "Profile name; defaults to ATO_PROFILE."},
    "minSeverity": {"type": "string", "enum": SEVERITIES},
    "excludeFindingsByCode": {"type": "array", "items": {"type": "string"}},
}


def _scan_schema(name_key: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "resourceGroupName": _NAME,
            name_key: _NAME,
            "tolerateMissing": {"type": "boolean", "default": False},
            **_SCAN_FILTERS,
        },
        "required": ["resourceGroupName", name_key],
        "additionalProperties": False,
    }


SCAN_WEBAPP_SCHEMA = _scan_schema("webAppName")
SCAN_APPPLAN_SCHEMA = _scan_schema("appServicePlanName")
SCAN_NETWORK_SCHEMA = _scan_schema("vnetName")

SCAN_WORKLOAD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "resourceGroupName": _NAME,
        "appServicePlanName": _NAME,
        "webAppName": _NAME,
        "keyVaultName": _NAME,
        "storageAccountName": _NAME,
        "logAnalyticsName": _NAME,
        "vnetName": _NAME,
        "tolerateMissing": {"type": "boolean", "default": True},
        **_SCAN_FILTERS,
    },
    "required": ["resourceGroupName"],
    "anyOf": [
        {"required": [key]}
        for key in (
            "appServicePlanName",
            "webAppName",
            "keyVaultName",
            "storageAccountName",
            "logAnalyticsName",
            "vnetName",
        )
    ],
    "additionalProperties": False,
}

SCAN_RESOURCE_GROUP_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "resourceGroupName": _NAME,
        "include": {"type": "array", "items": {"type": "string", "enum": RESOURCE_KINDS}},
        "exclude": {"type": "array", "items": {"type": "string", "enum": RESOURCE_KINDS}},
        "limitPerType": {"type": "integer", "minimum": 1, "maximum": 200},
        **_SCAN_FILTERS,
    },
    "required": ["resourceGroupName"],
    "additionalProperties": False,
}

_FINDING = {
    "type": "object",
    "properties": {
        "code": {"type": "string", "minLength": 1},
        "severity": {"type": "string"},
        "meta": {"type": "object"},
    },
    "required": ["code"],
}

REMEDIATE_WEBAPP_SCHEMA = governed_schema(
    {
        "resourceGroupName": _NAME,
        "name": _NAME,
        "findings": {"type": "array", "items": _FINDING},
        "defaults": {
            "type": "object",
            "properties": {"lawResourceId": {"type": "string"}},
            "additionalProperties": False,
        },
    },
    ["resourceGroupName", "name"],
)

REMEDIATE_APPPLAN_SCHEMA = governed_schema(
    {
        "resourceGroupName": _NAME,
        "name": _NAME,
        "findings": {"type": "array", "items": _FINDING},
        "defaults": {
            "type": "object",
            "properties": {
                "lawResourceId": {"type": "string"},
                "planSku": {"type": "string"},
                "capacity": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
    },
    ["resourceGroupName", "name"],
)

AUTOFIX_RG_SCHEMA = governed_schema(
    {
        "resourceGroupName": _NAME,
        "findings": {"type": "array", "items": _FINDING, "minItems": 1},
        "codes": {"type": "array", "items": {"type": "string"}},
        "defaults": {
            "type": "object",
            "properties": {
                "lawResourceId": {"type": "string"},
                "planSku": {"type": "string"},
                "capacity": {"type": "integer", "minimum": 1},
            },
            "additionalProperties": False,
        },
    },
    ["resourceGroupName", "findings"],
)
