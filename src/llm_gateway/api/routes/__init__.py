"""
Routes API de la passerelle.
"""
