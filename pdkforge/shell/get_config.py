#  pdkforge-get-config
#
#  Read a setting from the given JSON database (as written by `pdkforge dump -o x.json`)
#  or the one named by the PDKFORGE_DATABASE environment variable.
#
#  See LICENSE for licence details.

# pylint: disable=invalid-name

import argparse
import json
import os
import sys

import pdkforge.config as forge_config


def run(args):
    if args.db is None:
        try:
            db_location = os.environ["PDKFORGE_DATABASE"]
        except KeyError:
            print("No database --db specified and PDKFORGE_DATABASE is not defined", file=sys.stderr)
            return 1
    else:
        db_location = args.db
    database = forge_config.SettingsDatabase()
    with open(db_location) as f:
        database.update_project([json.load(f)])
    try:
        print(str(database.get_setting(args.key, args.nullvalue, check_type=False)))
        return 0
    except KeyError as e:
        if args.error_if_missing:
            print("Error: " + e.args[0], file=sys.stderr)
            return 1
        print(args.nullvalue)
        return 0


def main(argv=None):
    parser = argparse.ArgumentParser()

    parser.add_argument("-n", "--nullvalue", default="null", required=False,
                        help='Value to print out for nulls. (default: "null")')
    parser.add_argument("-e", "--error-if-missing", action='store_const',
                        const=True, default=False, required=False,
                        help="Error out if the key is missing. (default: false)")
    parser.add_argument('--db', type=str, required=False,
                        help='Path to the JSON database')
    parser.add_argument('key', metavar='KEY', type=str,
                        help='Key to retrieve from the database')

    sys.exit(run(parser.parse_args(argv)))
