"""
Generators for the children managed by the operator and the comparators used to
detect drift between a generated child and what is stored in the cluster
"""
