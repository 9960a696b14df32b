"""Built-in ATO profile used when no profile file is configured."""

from __future__ import annotations

_DIAG_TO_LAW = "Enable diagnostic settings to a Log Analytics Workspace."
_TLS_12 = "Set minimum TLS version to 1.2 and disable legacy protocols."

DEFAULT_ATO_PROFILES: dict[str, dict[str, object]] = {
    "default": {
        "webapp": {
            "rules": {
                "APP_TLS_MIN_BELOW_1_2": {"controls": ["SC-13", "SC-8"], "suggest": _TLS_12},
                "APP_HTTPS_ONLY_DISABLED": {
                    "controls": ["SC-23"],
                    "suggest": "Enable HTTPS-only on the Web App.",
                },
                "APP_FTPS_NOT_DISABLED": {
                    "controls": ["CM-7"],
                    "suggest": "Disable FTPS (set ftpsState: Disabled).",
                },
                "APP_MSI_DISABLED": {
                    "controls": ["AC-3", "IA-2"],
                    "suggest": "Enable system-assigned identity on the Web App.",
                },
                "APP_DIAG_NO_LAW": {"controls": ["AU-6", "AU-12"], "suggest": _DIAG_TO_LAW},
                "APP_MISSING": {"controls": ["CM-8"], "suggest": "Verify the Web App name."},
            }
        },
        "appPlan": {
            "rules": {
                "APPPLAN_SKU_TOO_LOW": {
                    "controls": ["CP-10", "SC-5"],
                    "suggest": "Move the plan to a dedicated SKU such as P1v3.",
                },
                "APPPLAN_HTTPS_ONLY_DISABLED": {
                    "controls": ["SC-23"],
                    "suggest": "Enforce HTTPS-only for apps on the plan.",
                },
                "APPPLAN_FTPS_NOT_DISABLED": {
                    "controls": ["CM-7"],
                    "suggest": "Disable FTPS for apps on the plan.",
                },
                "APPPLAN_MSI_DISABLED": {
                    "controls": ["AC-3", "IA-2"],
                    "suggest": "Enable system-assigned identity.",
                },
                "APPPLAN_DIAG_NO_LAW": {"controls": ["AU-6", "AU-12"], "suggest": _DIAG_TO_LAW},
                "APPPLAN_MISSING": {
                    "controls": ["CM-8"],
                    "suggest": "Verify the App Service Plan name.",
                },
                "PLAN_SKU_IS_FREE": {
                    "controls": ["CP-10", "SC-5"],
                    "suggest": "Move the plan off the Free tier.",
                },
                "PLAN_WORKER_COUNT_TOO_LOW": {
                    "controls": ["CP-10"],
                    "suggest": "Run at least 2 workers for availability.",
                },
                "PLAN_ZONE_REDUNDANCY_DISABLED": {
                    "controls": ["CP-10"],
                    "suggest": "Enable zone redundancy on the plan.",
                },
            }
        },
        "keyVault": {
            "rules": {
                "KV_RBAC_NOT_ENABLED": {
                    "controls": ["AC-3", "AC-6"],
                    "suggest": "Enable RBAC authorization on the Key Vault.",
                },
                "KV_PUBLIC_NETWORK_ENABLED": {
                    "controls": ["SC-7"],
                    "suggest": "Disable public network access and use a private endpoint.",
                },
                "KV_PURGE_PROTECTION_DISABLED": {
                    "controls": ["SI-12"],
                    "suggest": "Enable purge protection on the Key Vault.",
                },
                "KV_SOFT_DELETE_DISABLED": {
                    "controls": ["SI-12"],
                    "suggest": "Enable soft delete on the Key Vault.",
                },
                "KV_MISSING": {"controls": ["CM-8"], "suggest": "Verify the Key Vault name."},
            }
        },
        "storageAccount": {
            "rules": {
                "STG_HTTPS_ONLY_DISABLED": {
                    "controls": ["SC-8"],
                    "suggest": "Require secure transfer (HTTPS only).",
                },
                "STG_MIN_TLS_BELOW_1_2": {"controls": ["SC-13", "SC-8"], "suggest": _TLS_12},
                "STG_BLOB_PUBLIC_ACCESS_ENABLED": {
                    "controls": ["AC-3", "AC-22"],
                    "suggest": "Disallow anonymous blob public access.",
                },
                "STG_MISSING": {
                    "controls": ["CM-8"],
                    "suggest": "Verify the Storage Account name.",
                },
            }
        },
        "logAnalytics": {
            "rules": {
                "LAW_RETENTION_TOO_LOW": {
                    "controls": ["AU-11"],
                    "suggest": "Retain workspace data for at least 30 days.",
                },
                "LAW_MISSING": {
                    "controls": ["CM-8"],
                    "suggest": "Verify the Log Analytics workspace name.",
                },
            }
        },
        "network": {
            "rules": {
                "NET_DDOS_DISABLED": {
                    "controls": ["SC-5"],
                    "suggest": "Attach a DDoS protection plan to the VNet.",
                },
                "SUBNET_PENP_NOT_DISABLED": {
                    "controls": ["SC-7"],
                    "suggest": "Set privateEndpointNetworkPolicies to Disabled on the subnet.",
                },
                "VNET_MISSING": {"controls": ["CM-8"], "suggest": "Verify the VNet name."},
            }
        },
        "resourceGroup": {
            "rules": {
                "RG_TAGS_MISSING": {
                    "controls": ["CM-6"],
                    "suggest": "Apply required tags to the Resource Group.",
                },
            }
        },
    },
}
