"""
Trasferimento file da storage esterno (Dropbox).
"""
