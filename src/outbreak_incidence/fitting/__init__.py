# src/outbreak_incidence/fitting/__init__.py
