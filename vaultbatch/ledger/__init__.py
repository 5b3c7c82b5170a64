"""
Ledger Codecs
=============
Pure, deterministic encoders/decoders for the programs the engine talks to.

- multisig: Squads v4 PDAs, instructions, account layouts
- stake_program: native Stake program instructions and StakeStateV2
- memo: optional vault-signed notes
- lookup_table: address lookup table decoding
"""
