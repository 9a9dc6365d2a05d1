"""
The web interface layer of docrest
"""
