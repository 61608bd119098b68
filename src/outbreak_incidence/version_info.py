# src/outbreak_incidence/version_info.py
VERSION = "0.1.0"
