"""
Módulo de ventas (colaborador del cierre de caja)

Provee la persistencia de ventas y pagos, el listado con filtros, la
marcación de cancelación y el puerto de restauración de inventario.
Las reglas de propiedad y vínculo con la caja viven en ``app.modules.pos``.
"""
