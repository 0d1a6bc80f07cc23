"""Scene graph to GLB exporter"""
