"""Binary container definitions: ELU, ANI and GLB"""
