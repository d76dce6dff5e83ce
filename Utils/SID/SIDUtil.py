#!/usr/bin/python3

##########################################################
#                     Dependencies                       #
##########################################################

import io, binascii, string

########################################################
#                     SID Parsing                      #
########################################################

# https://docs.microsoft.com/en-us/openspecs/windows_protocols/ms-dtyp/f992ad60-0fe4-4b87-9fed-beb478836861
class SID:
	def __init__(self):
		self.Revision = None
		self.SubAuthorityCount = None
		self.IdentifierAuthority = None
		self.SubAuthority = []

	@staticmethod
	def from_string(sid_str):
		if sid_str[:4] != 'S-1-':
			raise ValueError(f"{sid_str} is not a SID")
		sid = SID()
		sid.Revision = 1
		parts = sid_str[4:].split('-')
		t = parts[0]
		if t[:2] == '0x':
			sid.IdentifierAuthority = int(t[2:], 16)
		else:
			sid.IdentifierAuthority = int(t)
		for p in parts[1:]:
			sid.SubAuthority.append(int(p))
		sid.SubAuthorityCount = len(sid.SubAuthority)
		return sid

	@staticmethod
	def from_bytes(data):
		# 1 byte revision + 1 byte count + 6 bytes authority
		if len(data) < 8:
			raise ValueError(f"SID too short ({len(data)} bytes)")
		if len(data) != 8 + data[1] * 4:
			raise ValueError(f"SID length {len(data)} does not match {data[1]} sub-authorities")
		return SID.from_buffer(io.BytesIO(data))

	@staticmethod
	def from_buffer(buff):
		sid = SID()
		sid.Revision = int.from_bytes(buff.read(1), 'little', signed = False)
		sid.SubAuthorityCount = int.from_bytes(buff.read(1), 'little', signed = False)
		sid.IdentifierAuthority = int.from_bytes(buff.read(6), 'big', signed = False)
		for _ in range(sid.SubAuthorityCount):
			sid.SubAuthority.append(int.from_bytes(buff.read(4), 'little', signed = False))
		return sid

	def to_bytes(self):
		t = self.Revision.to_bytes(1, 'little', signed = False)
		t += len(self.SubAuthority).to_bytes(1, 'little', signed = False)
		t += self.IdentifierAuthority.to_bytes(6, 'big', signed = False)
		for i in self.SubAuthority:
			t += i.to_bytes(4, 'little', signed = False)
		return t

	def __str__(self):
		t = f'S-{self.Revision}-'
		if self.IdentifierAuthority < 2**32:
			t += str(self.IdentifierAuthority)
		else:
			t += '0x' + self.IdentifierAuthority.to_bytes(6, 'big').hex().upper().rjust(12, '0')
		for i in self.SubAuthority:
			t += '-' + str(i)
		return t

def _is_hex(value):
	return len(value) > 0 and len(value) % 2 == 0 and all(c in string.hexdigits for c in value)

def parse_sid(value):
	"""
	Convert whatever SQL Server hands back for a SID into its string form.

	Accepts raw SID bytes, the ASCII hex impacket produces for varbinary columns,
	'0x...' strings, bare hex strings and already formatted 'S-1-...' strings.
	Returns None when the value is not a SID.
	"""
	if value is None:
		return None

	try:
		if isinstance(value, (bytes, bytearray)):
			value = bytes(value)
			if len(value) == 0:
				return None
			text = value.decode('ascii', errors = 'ignore')
			if len(text) == len(value) and _is_hex(text):
				value = binascii.unhexlify(text)
			return str(SID.from_bytes(value))

		value = str(value).strip()
		if value == '' or value.upper() == 'NULL':
			return None
		if value.upper().startswith('S-1-'):
			return str(SID.from_string('S-1-' + value[4:]))
		if value[:2].lower() == '0x':
			value = value[2:]
		if not _is_hex(value):
			return None
		return str(SID.from_bytes(binascii.unhexlify(value)))
	except ValueError:
		return None

def get_domain_sid(sid):
	if sid is None:
		return None
	parts = sid.split('-')
	if len(parts) < 4:
		return None
	return '-'.join(parts[:-1])

def get_rid(sid):
	if sid is None:
		return None
	parts = sid.split('-')
	if len(parts) < 4:
		return None
	return parts[-1]

def is_domain_sid(sid):
	return sid is not None and sid.startswith('S-1-5-21-')
