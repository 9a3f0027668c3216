"""
Credentia — Systems

issuance      template review, recipient resolution, certificate minting
verification  public authenticity checks for issued certificates
"""
