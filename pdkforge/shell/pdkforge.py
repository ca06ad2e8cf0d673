#  pdkforge
#
#  Entry point for the pdkforge command-line driver.
#
#  See LICENSE for licence details.

from pdkforge.core.cli_driver import CLIDriver


def main():
    CLIDriver().main()
