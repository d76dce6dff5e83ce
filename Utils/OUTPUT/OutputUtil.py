#!/usr/bin/python3

##########################################################
#                     Dependencies                       #
##########################################################

import math
import pandas as dp
from tabulate import tabulate

##########################################################
#                     Formatters                         #
##########################################################

FORMATS = ['markdown', 'csv']
OUTPUT_FORMAT = 'markdown'

def set_format(name):
	global OUTPUT_FORMAT
	name = name.lower()
	if name not in FORMATS:
		raise ValueError(f"Unknown output format '{name}'. Valid formats: {', '.join(FORMATS)}")
	OUTPUT_FORMAT = name

def get_format():
	return OUTPUT_FORMAT

def format_cell(value):
	if value is None:
		return ''
	if isinstance(value, float) and math.isnan(value):
		return ''
	if isinstance(value, (bytes, bytearray)):
		if len(value) == 0:
			return ''
		return '0x' + bytes(value).hex().upper()
	return str(value)

def _prepare(table):
	headers = []
	for i, column in enumerate(table.columns):
		column = str(column)
		headers.append(column if column != '' else f"column{i}")
	prepared = dp.DataFrame([[format_cell(v) for v in row] for row in table.itertuples(index = False, name = None)], columns = headers)
	return prepared

def _markdown_cell(value):
	return value.replace('|', '\\|').replace('\r\n', ' ').replace('\n', ' ').replace('\r', ' ')

def to_markdown(table):
	prepared = _prepare(table)
	headers = [_markdown_cell(h) for h in prepared.columns]
	rows = [[_markdown_cell(v) for v in row] for row in prepared.itertuples(index = False, name = None)]
	# disable_numparse keeps hex strings and version numbers as typed
	result = tabulate(rows, headers = headers, tablefmt = 'github', disable_numparse = True)
	return "\n" + result + "\n"

def _csv_cell(value):
	# csv.writer leaves a bare '\r' unquoted when rows end with '\n'
	if ';' in value or '"' in value or '\n' in value or '\r' in value:
		return '"' + value.replace('"', '""') + '"'
	return value

def to_csv(table):
	prepared = _prepare(table)
	lines = [';'.join(_csv_cell(h) for h in prepared.columns)]
	lines += [';'.join(_csv_cell(v) for v in row) for row in prepared.itertuples(index = False, name = None)]
	return '\n'.join(lines) + '\n'

def convert_table(table):
	if table is None or len(table.columns) == 0 or len(table) == 0:
		return "No data available."
	if OUTPUT_FORMAT == 'csv':
		return to_csv(table)
	return to_markdown(table)

def convert_dict(mapping, keyHeader, valueHeader):
	if not mapping:
		return ''
	table = dp.DataFrame([[k, v] for k, v in mapping.items()], columns = [keyHeader, valueHeader])
	return convert_table(table)

def convert_list(values, column):
	if not values:
		return ''
	return convert_table(dp.DataFrame({column: list(values)}))

def print_table(table):
	print(convert_table(table))

def print_dict(mapping, keyHeader = "Property", valueHeader = "Value"):
	print(convert_dict(mapping, keyHeader, valueHeader))
