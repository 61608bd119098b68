# src/outbreak_incidence/series/__init__.py
