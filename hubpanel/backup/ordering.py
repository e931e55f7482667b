"""
Foreign-key dependency analysis for dump table ordering
"""

from typing import Dict, List, Mapping

import networkx as nx

from ..database.models import TableStructure


class SchemaAnalyzer:
    """Analyze foreign keys between tables and derive a safe creation order

    Edges point from the referenced table to the referencing one, so a
    topological sort lists parents before their children.
    """

    def __init__(self):
        self.relationship_graph = nx.DiGraph()

    def build_graph(self, structures: Mapping[str, TableStructure]) -> nx.DiGraph:
        """Build a graph of table relationships"""
        self.relationship_graph.clear()

        for table_name in structures:
            self.relationship_graph.add_node(table_name)

        for table_name, dependencies in self.dependencies(structures).items():
            for referenced in dependencies:
                self.relationship_graph.add_edge(referenced, table_name)

        return self.relationship_graph

    def dependencies(self, structures: Mapping[str, TableStructure]) -> Dict[str, List[str]]:
        """Tables each table references, restricted to the given set"""
        deps = {}
        for table_name, structure in structures.items():
            deps[table_name] = []
            for constraint in structure.constraints:
                ref = constraint.referenced_table
                if constraint.constraint_type != "f" or not ref:
                    continue
                # Self references and tables outside the dump do not constrain order
                if ref == table_name or ref not in structures:
                    continue
                if ref not in deps[table_name]:
                    deps[table_name].append(ref)
        return deps

    def find_circular_references(self) -> List[List[str]]:
        return [sorted(cycle) for cycle in nx.simple_cycles(self.relationship_graph)]

    def insertion_order(self, structures: Mapping[str, TableStructure]) -> List[str]:
        """Order in which tables can be created and filled"""
        self.build_graph(structures)
        try:
            return list(nx.lexicographical_topological_sort(self.relationship_graph))
        except nx.NetworkXUnfeasible:
            # Cycles: fewer dependencies first
            return self._dependency_based_order(structures)

    def deletion_order(self, structures: Mapping[str, TableStructure]) -> List[str]:
        return list(reversed(self.insertion_order(structures)))

    def _dependency_based_order(self, structures: Mapping[str, TableStructure]) -> List[str]:
        deps = self.dependencies(structures)
        return sorted(deps, key=lambda name: (len(deps[name]), name))
