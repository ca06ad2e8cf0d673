#  pdkforge: provisioning of the SKY130 PDK and the Magic layout tool.
#
#  See LICENSE for licence details.

__version__ = "0.1.0"
